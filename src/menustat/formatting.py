"""Human-readable formatting of rates, durations and temperatures."""

import math
from enum import Enum


class RateUnit(Enum):
    """Axis used when displaying network throughput."""

    BYTES = "bytes"
    BITS = "bits"


class TemperatureUnit(Enum):
    CELSIUS = "celsius"
    FAHRENHEIT = "fahrenheit"

    @property
    def symbol(self) -> str:
        return "°C" if self is TemperatureUnit.CELSIUS else "°F"


_BIT_UNITS = ("b/s", "Kb/s", "Mb/s", "Gb/s")
_BYTE_UNITS = ("B/s", "KB/s", "MB/s", "GB/s")

CALCULATING = "Calculating..."


def format_rate(value: float, unit: RateUnit, auto_scale: bool = True) -> tuple[str, str]:
    """
    Format a bytes-per-second rate as a ``(magnitude, unit)`` pair.

    Bits mode multiplies by 8 and scales by 1000; bytes mode scales by 1024.
    Without auto-scaling the value is reported in base units with no decimals.
    Scaled magnitudes below 10 keep one decimal.
    """
    base_value = value * 8 if unit is RateUnit.BITS else value

    if not auto_scale:
        return f"{base_value:.0f}", _BIT_UNITS[0] if unit is RateUnit.BITS else _BYTE_UNITS[0]

    units = _BIT_UNITS if unit is RateUnit.BITS else _BYTE_UNITS
    base = 1000.0 if unit is RateUnit.BITS else 1024.0

    scaled = base_value
    index = 0
    while scaled >= base and index < len(units) - 1:
        scaled /= base
        index += 1

    magnitude = f"{scaled:.1f}" if scaled < 10 else f"{scaled:.0f}"
    return magnitude, units[index]


def format_time_remaining(minutes: float) -> str:
    """Render a minutes estimate; sentinels (<= 0, -1, NaN, inf) read "Calculating..."."""
    if math.isnan(minutes) or math.isinf(minutes) or minutes <= 0:
        return CALCULATING

    total = int(minutes)
    hours, mins = divmod(total, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def format_duration(seconds: float) -> str:
    total = int(max(0.0, seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9.0 / 5.0 + 32.0


def format_temperature(
    celsius: float,
    unit: TemperatureUnit = TemperatureUnit.CELSIUS,
    show_both: bool = False,
) -> str:
    if show_both:
        return f"{celsius:.1f}°C / {celsius_to_fahrenheit(celsius):.1f}°F"
    if unit is TemperatureUnit.FAHRENHEIT:
        return f"{celsius_to_fahrenheit(celsius):.1f}°F"
    return f"{celsius:.1f}°C"

