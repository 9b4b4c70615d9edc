"""UPS power-source change notifications."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime

from menustat.config import SamplerConfig
from menustat.delivery import NotificationDelivery
from menustat.formatting import format_duration, format_time_remaining
from menustat.models import Snapshot, UPSInfo

logger = logging.getLogger(__name__)

POWER_LOSS_SUBJECT = "UPS Power Loss - Running on Battery"
POWER_RESTORED_SUBJECT = "UPS Power Restored - AC Power Available"

_FOOTER = "This is an automated notification from menustat."


@dataclass(slots=True, frozen=True)
class Notification:
    subject: str
    body: str
    to_address: str
    from_address: str
    from_name: str


def compose_message(
    ups: UPSInfo,
    on_battery: bool,
    timestamp: datetime,
    outage: float | None = None,
) -> tuple[str, str]:
    """Subject and body for a power-loss or power-restored notification."""
    stamp = timestamp.strftime("%A, %B %d, %Y at %H:%M")
    if on_battery:
        body = (
            "Power loss detected! Your UPS is now running on battery power.\n"
            "\n"
            f"UPS Name: {ups.name}\n"
            f"Current Charge: {ups.charge_level:.1f}%\n"
            f"Estimated Time Remaining: {format_time_remaining(ups.time_remaining)}\n"
            f"Timestamp: {stamp}\n"
            "\n"
            "Please check your power supply immediately.\n"
            "\n"
            f"{_FOOTER}"
        )
        return POWER_LOSS_SUBJECT, body

    body = (
        "Power restored! Your UPS is now running on AC power.\n"
        "\n"
        f"UPS Name: {ups.name}\n"
        f"Current Charge: {ups.charge_level:.1f}%\n"
        f"Power Outage Duration: {format_duration(outage or 0.0)}\n"
        f"Timestamp: {stamp}\n"
        "\n"
        f"{_FOOTER}"
    )
    return POWER_RESTORED_SUBJECT, body


class PowerChangeNotifier:
    """
    Watches the UPS power source across snapshots and sends a notification
    when the host moves between AC and UPS battery power.

    Snapshots taken before the first full load are ignored, and the first
    loaded snapshot only seeds the previous state. Power-loss notifications
    are held back while the last delivered notification is younger than the
    cooldown; power-restored notifications always go out. A failed delivery
    is logged and does not undo the bookkeeping.
    """

    def __init__(
        self,
        delivery: NotificationDelivery,
        config: SamplerConfig | None = None,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._delivery = delivery
        self._config = config or SamplerConfig()
        self._executor = executor
        self._clock = clock
        self._lock = threading.Lock()
        self._previous_on_battery: bool | None = None
        self._last_notification: datetime | None = None

    @property
    def config(self) -> SamplerConfig:
        return self._config

    @config.setter
    def config(self, value: SamplerConfig) -> None:
        self._config = value

    @property
    def previous_on_battery(self) -> bool | None:
        return self._previous_on_battery

    @property
    def last_notification_time(self) -> datetime | None:
        return self._last_notification

    def reset(self) -> None:
        with self._lock:
            self._previous_on_battery = None
            self._last_notification = None

    def observe(self, snapshot: Snapshot) -> bool:
        """Inspect a published snapshot; return True if a notification was dispatched."""
        notification = self.evaluate(snapshot)
        if notification is None:
            return False
        self.dispatch(notification)
        return True

    def evaluate(self, snapshot: Snapshot) -> Notification | None:
        """
        Update the transition state and return the notification to send, if any.

        Nothing is delivered here; callers holding a lock pass the result to
        ``dispatch`` after releasing it.
        """
        if not snapshot.data_loaded:
            return None

        ups = snapshot.ups
        on_battery = ups.is_on_battery
        with self._lock:
            previous, self._previous_on_battery = self._previous_on_battery, on_battery
            if previous is None or previous == on_battery:
                return None

            config = self._config
            if not ups.present or not config.notifications_configured:
                logger.info("UPS power source changed to %s", ups.power_source.value)
                return None

            now = self._clock()
            since_last = None
            if self._last_notification is not None:
                since_last = (now - self._last_notification).total_seconds()
            if on_battery and since_last is not None and since_last < config.notification_cooldown:
                logger.info("Power-loss notification suppressed, last one %.0fs ago", since_last)
                return None

            subject, body = compose_message(ups, on_battery, now, outage=since_last)
            self._last_notification = now

        return Notification(subject, body, config.recipient, config.from_address, config.sender_name)

    def dispatch(self, notification: Notification) -> None:
        """Deliver on the executor when one was given, otherwise on the calling thread."""
        if self._executor is not None:
            self._executor.submit(self._deliver, notification)
        else:
            self._deliver(notification)

    def _deliver(self, notification: Notification) -> None:
        try:
            delivered = self._delivery.send(
                notification.subject,
                notification.body,
                notification.to_address,
                notification.from_address,
                notification.from_name,
            )
        except Exception:
            logger.exception("Sending %r failed", notification.subject)
            return
        if delivered:
            logger.info("Sent notification: %s", notification.subject)
        else:
            logger.warning("Notification not delivered: %s", notification.subject)
