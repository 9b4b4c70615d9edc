"""Sampling and notification settings handed to the sampler."""

import os
from dataclasses import dataclass, replace

from menustat.formatting import RateUnit
from menustat.network import ALL_INTERFACES

MIN_INTERVAL = 0.1
DEFAULT_FROM_NAME = "menustat"


@dataclass(slots=True, frozen=True)
class SamplerConfig:
    """
    Settings supplied by whoever persists user preferences.

    A new instance is passed to ``Sampler.apply_config`` whenever something
    changes; the sampler never mutates it.
    """

    fast_interval: float = 2.0
    slow_interval: float = 30.0
    selected_interface: str = ALL_INTERFACES
    rate_unit: RateUnit = RateUnit.BYTES
    auto_scale: bool = True
    process_count: int = 5
    ups_notifications_enabled: bool = True
    email_enabled: bool = False
    notification_cooldown: float = 300.0
    to_address: str = ""
    from_address: str = ""
    from_name: str = ""

    def __post_init__(self) -> None:
        if self.fast_interval <= 0 or self.slow_interval <= 0:
            raise ValueError("sampling intervals must be positive")
        if self.notification_cooldown < 0:
            raise ValueError("notification cooldown cannot be negative")
        if self.process_count < 1:
            raise ValueError("process_count must be at least 1")

    def with_changes(self, **changes) -> "SamplerConfig":
        return replace(self, **changes)

    @property
    def notifications_configured(self) -> bool:
        """Whether power-change mail can actually be sent."""
        return self.ups_notifications_enabled and self.email_enabled and bool(self.from_address)

    @property
    def recipient(self) -> str:
        return self.to_address or self.from_address

    @property
    def sender_name(self) -> str:
        return self.from_name or DEFAULT_FROM_NAME


def mailjet_credentials() -> tuple[str, str] | None:
    """API key and secret from ``MAILJET_API_KEY`` / ``MAILJET_API_SECRET``."""
    key = os.environ.get("MAILJET_API_KEY", "")
    secret = os.environ.get("MAILJET_API_SECRET", "")
    if key and secret:
        return key, secret
    return None
