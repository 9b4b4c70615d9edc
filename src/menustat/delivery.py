"""Outbound notification deliveries."""

import logging
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


class NotificationDelivery(Protocol):
    def send(
        self,
        subject: str,
        body: str,
        to_address: str,
        from_address: str,
        from_name: str,
    ) -> bool: ...


class LogDelivery:
    """Writes notifications to the log instead of sending them."""

    def __init__(self, logger: logging.Logger = logger) -> None:
        self.logger = logger

    def send(self, subject: str, body: str, to_address: str, from_address: str, from_name: str) -> bool:
        self.logger.warning("%s (to %s)\n%s", subject, to_address or "nobody", body)
        return True


class MailjetDelivery:
    """Sends plain-text mail through the Mailjet REST API."""

    def __init__(self, api_key: str, api_secret: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout

    def send(self, subject: str, body: str, to_address: str, from_address: str, from_name: str) -> bool:
        if not (self.api_key and self.api_secret and from_address and to_address):
            logger.warning("Mailjet delivery is missing credentials or addresses")
            return False

        payload = {
            "Messages": [
                {
                    "From": {"Email": from_address, "Name": from_name},
                    "To": [{"Email": to_address, "Name": ""}],
                    "Subject": subject,
                    "TextPart": body,
                }
            ]
        }
        try:
            response = requests.post(
                MAILJET_SEND_URL,
                json=payload,
                auth=(self.api_key, self.api_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Mailjet request failed: %s", exc)
            return False

        if not response.ok:
            logger.warning("Mailjet rejected the message: HTTP %d %s", response.status_code, response.text[:200])
            return False
        return True
