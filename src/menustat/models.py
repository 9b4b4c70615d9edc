"""Data models for menustat."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PowerSource(str, Enum):
    """Labels reported by the power-management tool for the active source."""

    AC = "AC Power"
    UPS = "UPS Power"
    BATTERY = "Battery Power"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, label: str | None) -> "PowerSource":
        """Map a raw label onto the closed set, defaulting to UNKNOWN."""
        try:
            return cls(label)
        except ValueError:
            return cls.UNKNOWN


class UpdateKind(Enum):
    """What a publication carries."""

    FULL = "full"
    POWER = "power"


@dataclass(slots=True, frozen=True)
class ProcessEntry:
    """One row of a top-N process ranking."""

    pid: int
    name: str
    cpu_percent: float  # 0.0 - 100.0
    memory_percent: float  # 0.0 - 100.0


@dataclass(slots=True, frozen=True)
class InterfaceCounters:
    """Cumulative byte counters of one interface at a point in time."""

    bytes_in: int = 0
    bytes_out: int = 0

    def __add__(self, other: "InterfaceCounters") -> "InterfaceCounters":
        return InterfaceCounters(self.bytes_in + other.bytes_in, self.bytes_out + other.bytes_out)

    def delta(self, previous: "InterfaceCounters") -> "InterfaceCounters":
        """Per-direction difference, clamped at 0 when a counter went backwards."""
        return InterfaceCounters(
            bytes_in=max(0, self.bytes_in - previous.bytes_in),
            bytes_out=max(0, self.bytes_out - previous.bytes_out),
        )


@dataclass(slots=True, frozen=True)
class MemoryUsage:
    used_gb: float = 0.0
    total_gb: float = 0.0


@dataclass(slots=True, frozen=True)
class DiskUsage:
    free_gb: float = 0.0
    total_gb: float = 0.0


@dataclass(slots=True, frozen=True)
class NetworkRates:
    """Throughput in bytes per second; upload is outbound, download inbound."""

    upload: float = 0.0
    download: float = 0.0


@dataclass(slots=True, frozen=True)
class UPSInfo:
    """State of an attached UPS. ``present=False`` is the absence value."""

    present: bool = False
    name: str = "Unknown"
    is_charging: bool = False
    charge_level: float = 0.0
    time_remaining: float = 0.0  # minutes, -1/NaN/inf mean unknown
    power_source: PowerSource = PowerSource.UNKNOWN
    manufacturer: str = "Unknown"
    model: str = "Unknown"
    serial_number: str = "Unknown"
    voltage: float = 0.0
    load_percentage: float = 0.0

    @classmethod
    def absent(cls, power_source: PowerSource = PowerSource.UNKNOWN) -> "UPSInfo":
        return cls(power_source=power_source)

    @property
    def is_on_battery(self) -> bool:
        return self.power_source is PowerSource.UPS


@dataclass(slots=True, frozen=True)
class BatteryInfo:
    """State of the internal battery. ``present=False`` is the absence value."""

    present: bool = False
    name: str = "Unknown"
    is_charging: bool = False
    charge_level: float = 0.0
    time_remaining: float = 0.0  # minutes
    cycle_count: int = 0
    health: str = "Unknown"
    temperature: float = 0.0  # Celsius
    amperage: float = 0.0  # mA, magnitude; direction is is_charging
    voltage: float = 0.0  # mV
    max_capacity: int = 100  # percent of design capacity


@dataclass(slots=True, frozen=True)
class PowerConsumptionInfo:
    """Power draw in watts."""

    cpu_power: float = 0.0
    gpu_power: float = 0.0
    total_system_power: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    is_estimate: bool = True


@dataclass(slots=True, frozen=True)
class SystemInfo:
    model_name: str = "Unknown"
    chip: str = "Unknown"
    os_version: str = "Unknown"
    kernel_version: str = "Unknown"
    uptime: float = 0.0  # seconds
    boot_time: datetime = field(default_factory=datetime.now)


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable bundle of every currently-known telemetry value."""

    cpu_usage: float = 0.0
    cpu_temperature: float = 0.0
    memory: MemoryUsage = MemoryUsage()
    disk: DiskUsage = DiskUsage()
    network: NetworkRates = NetworkRates()
    top_cpu_processes: tuple[ProcessEntry, ...] = ()
    top_memory_processes: tuple[ProcessEntry, ...] = ()
    ups: UPSInfo = UPSInfo()
    battery: BatteryInfo = BatteryInfo()
    power: PowerConsumptionInfo = field(default_factory=PowerConsumptionInfo)
    system: SystemInfo = field(default_factory=SystemInfo)
    cpu_history: tuple[float, ...] = ()
    cpu_temperature_history: tuple[float, ...] = ()
    upload_history: tuple[float, ...] = ()
    download_history: tuple[float, ...] = ()
    network_interfaces: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)
    data_loaded: bool = False

    @classmethod
    def empty(cls) -> "Snapshot":
        """Cold-start value: every field default, ``data_loaded`` False."""
        return cls()


@dataclass(slots=True, frozen=True)
class SnapshotUpdate:
    """A publication delivered to subscribers."""

    kind: UpdateKind
    snapshot: Snapshot
