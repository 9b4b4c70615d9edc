"""Battery, UPS and power-draw collectors."""

import logging
import math
import plistlib
import re
import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import psutil

from menustat.commands import CommandRunner
from menustat.cpu import CpuCollector
from menustat.macmon import number, read_macmon_sample
from menustat.models import BatteryInfo, PowerConsumptionInfo, PowerSource, UPSInfo

logger = logging.getLogger(__name__)

PMSET = "/usr/bin/pmset"
IOREG = "/usr/sbin/ioreg"
SYSTEM_PROFILER = "/usr/sbin/system_profiler"

REGISTRY_CACHE_SECONDS = 1.0

# Power-source description keys, named as the platform registry names them.
TYPE = "Type"
NAME = "Name"
IS_CHARGING = "Is Charging"
CURRENT_CAPACITY = "Current Capacity"
TIME_TO_EMPTY = "Time to Empty"
TIME_TO_FULL = "Time to Full Charge"
IS_PRESENT = "Is Present"
POWER_SOURCE_STATE = "Power Source State"
MAX_CAPACITY = "MaxCapacity"

INTERNAL_BATTERY = "InternalBattery"
UPS_TYPE = "UPS"

_DRAWING_FROM = re.compile(r"Now drawing from '([^']+)'")
_SOURCE_LINE = re.compile(
    r"^\s*-(?P<name>.+?)\s+\(id=\d+\)\s+(?P<percent>\d+)%;\s*(?P<state>[^;]+);\s*(?P<rest>.*)$"
)
_REMAINING = re.compile(r"(\d+):(\d{2}) remaining")
_PRESENT = re.compile(r"present:\s*(true|false)")

_CHARGING_STATES = {"charging", "finishing charge"}
_UNSIGNED_WRAP = 2**64


def parse_drawing_from(output: str) -> PowerSource:
    """Active source from a ``Now drawing from '<source>'`` line."""
    for line in output.splitlines():
        if "Now drawing from" in line:
            match = _DRAWING_FROM.search(line)
            if match:
                return PowerSource.parse(match.group(1))
    return PowerSource.UNKNOWN


def parse_pmset_sources(output: str) -> list[dict[str, Any]]:
    """
    One description per source listed by ``pmset -g ps``.

    Lines look like::

        -InternalBattery-0 (id=4653155)	87%; discharging; 4:12 remaining present: true
        -Back-UPS ES 700 (id=1234)	100%; AC attached; not charging present: true
    """
    drawing_from = parse_drawing_from(output)
    descriptions = []
    for line in output.splitlines():
        match = _SOURCE_LINE.match(line)
        if not match:
            continue
        name = match.group("name").strip()
        state = match.group("state").strip().lower()
        rest = match.group("rest")
        charging = state in _CHARGING_STATES

        remaining = _REMAINING.search(rest)
        minutes = int(remaining.group(1)) * 60 + int(remaining.group(2)) if remaining else -1
        present = _PRESENT.search(rest)

        description: dict[str, Any] = {
            TYPE: INTERNAL_BATTERY if name.startswith(INTERNAL_BATTERY) else UPS_TYPE,
            NAME: name,
            CURRENT_CAPACITY: float(match.group("percent")),
            IS_CHARGING: charging,
            IS_PRESENT: present is None or present.group(1) == "true",
            TIME_TO_FULL if charging else TIME_TO_EMPTY: float(minutes),
        }
        if drawing_from is not PowerSource.UNKNOWN:
            description[POWER_SOURCE_STATE] = (
                PowerSource.AC.value if drawing_from is PowerSource.AC else PowerSource.BATTERY.value
            )
        descriptions.append(description)
    return descriptions


def _signed(value: int) -> int:
    return value - _UNSIGNED_WRAP if value >= _UNSIGNED_WRAP // 2 else value


def parse_smart_battery(output: str) -> dict[str, Any]:
    """
    Registry fields from ``ioreg -r -c AppleSmartBattery -a``.

    The smart-battery temperature (hundredths of a degree Celsius) is converted
    to tenths of a Kelvin, the unit power-source descriptions use. System
    input power from the telemetry block (milliwatts) becomes
    ``InstantaneousPower`` in watts. Maximum capacity is the raw full-charge
    capacity as a percentage of design capacity.
    """
    try:
        entries = plistlib.loads(output.encode())
    except (plistlib.InvalidFileException, ValueError) as exc:
        logger.debug("Unreadable AppleSmartBattery plist: %s", exc)
        return {}
    if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
        return {}
    entry = entries[0]

    fields: dict[str, Any] = {}
    if isinstance(entry.get("Temperature"), int):
        fields["Temperature"] = (entry["Temperature"] / 100.0 + 273.15) * 10.0
    for source, target in (
        ("CycleCount", "Cycle Count"),
        ("Voltage", "Voltage"),
        ("Amperage", "Amperage"),
    ):
        if isinstance(entry.get(source), int):
            fields[target] = float(_signed(entry[source]))
    if isinstance(entry.get("AdapterDetails"), dict):
        fields["AdapterDetails"] = entry["AdapterDetails"]
    telemetry = entry.get("PowerTelemetryData")
    if isinstance(telemetry, dict) and isinstance(telemetry.get("SystemPowerIn"), int):
        fields["InstantaneousPower"] = telemetry["SystemPowerIn"] / 1000.0
    raw_max, design = entry.get("AppleRawMaxCapacity"), entry.get("DesignCapacity")
    if isinstance(raw_max, int) and isinstance(design, int) and raw_max > 0 and design > 0:
        fields[MAX_CAPACITY] = min(100, round(raw_max / design * 100))
    if "ExternalConnected" in entry:
        fields[POWER_SOURCE_STATE] = (
            PowerSource.AC.value if entry["ExternalConnected"] else PowerSource.BATTERY.value
        )
    return fields


def parse_power_profile(output: str) -> dict[str, Any]:
    """Cycle count and maximum capacity from ``system_profiler SPPowerDataType``."""
    fields: dict[str, Any] = {}
    for line in output.splitlines():
        key, _, value = line.strip().partition(":")
        value = value.strip().rstrip("%").strip()
        if not value.isdigit():
            continue
        if key == "Cycle Count" and int(value) > 0:
            fields["Cycle Count"] = int(value)
        elif key == "Maximum Capacity":
            fields[MAX_CAPACITY] = int(value)
    return fields


def battery_health(max_capacity: int) -> str:
    if max_capacity >= 80:
        return "Good"
    if max_capacity >= 60:
        return "Fair"
    return "Poor"


class PowerSourceRegistry:
    """
    Power-source descriptions assembled from ``pmset``, ``ioreg`` and
    ``system_profiler``.

    One read serves every collector within ``REGISTRY_CACHE_SECONDS``, so a
    sampling cycle runs each command once.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: tuple[float, list[dict[str, Any]], PowerSource] | None = None

    def descriptions(self) -> list[dict[str, Any]]:
        descriptions, _ = self._read()
        return [dict(description) for description in descriptions]

    def drawing_from(self) -> PowerSource:
        _, source = self._read()
        return source

    def _read(self) -> tuple[list[dict[str, Any]], PowerSource]:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._cached[0] < REGISTRY_CACHE_SECONDS:
                return self._cached[1], self._cached[2]

            descriptions: list[dict[str, Any]] = []
            source = PowerSource.UNKNOWN
            output = self._runner.run(PMSET, ["-g", "ps"])
            if output is not None:
                descriptions = parse_pmset_sources(output)
                source = parse_drawing_from(output)
                battery = next((d for d in descriptions if d[TYPE] == INTERNAL_BATTERY), None)
                if battery is not None:
                    self._enrich_battery(battery)
            if source is PowerSource.UNKNOWN:
                batt = self._runner.run(PMSET, ["-g", "batt"])
                if batt is not None:
                    source = parse_drawing_from(batt)

            self._cached = (now, descriptions, source)
            return descriptions, source

    def _enrich_battery(self, battery: dict[str, Any]) -> None:
        smart = self._runner.run(IOREG, ["-r", "-c", "AppleSmartBattery", "-a"])
        if smart is not None:
            battery.update(parse_smart_battery(smart))
        profile = self._runner.run(SYSTEM_PROFILER, ["SPPowerDataType"])
        if profile is not None:
            details = parse_power_profile(profile)
            # The profiler's figures win, except its 100% default.
            if details.get(MAX_CAPACITY, 100) == 100:
                details.pop(MAX_CAPACITY, None)
            battery.update(details)


def _float(description: dict[str, Any], key: str, default: float = 0.0) -> float:
    value = description.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def battery_from_description(description: dict[str, Any]) -> BatteryInfo:
    charging = bool(description.get(IS_CHARGING, False))
    raw_temperature = _float(description, "Temperature")
    cycle_count = description.get("Cycle Count", description.get("AppleRawBatteryCycleCount", 0))
    max_capacity = int(_float(description, MAX_CAPACITY, 100.0))
    present = bool(description.get(IS_PRESENT, False))
    return BatteryInfo(
        present=present,
        name=description.get(NAME) or "Internal Battery",
        is_charging=charging,
        charge_level=max(0.0, _float(description, CURRENT_CAPACITY)),
        time_remaining=_float(description, TIME_TO_FULL if charging else TIME_TO_EMPTY),
        cycle_count=max(0, int(cycle_count)) if isinstance(cycle_count, (int, float)) else 0,
        health=battery_health(max_capacity) if present else "Unknown",
        max_capacity=max_capacity,
        temperature=raw_temperature / 10.0 - 273.15 if raw_temperature > 0 else 0.0,
        amperage=abs(_float(description, "Amperage")),
        voltage=_float(description, "Voltage"),
    )


def battery_from_psutil() -> BatteryInfo:
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, NotImplementedError, psutil.Error):
        return BatteryInfo()
    if battery is None:
        return BatteryInfo()
    plugged = bool(battery.power_plugged)
    seconds = battery.secsleft
    if seconds in (psutil.POWER_TIME_UNKNOWN, psutil.POWER_TIME_UNLIMITED) or seconds < 0:
        minutes = -1.0
    else:
        minutes = seconds / 60.0
    return BatteryInfo(
        present=True,
        name="Internal Battery",
        is_charging=plugged and battery.percent < 100,
        charge_level=float(battery.percent),
        time_remaining=minutes,
    )


class BatteryCollector:
    """Internal battery state from the registry, with psutil as a fallback."""

    def __init__(self, registry: PowerSourceRegistry, use_psutil: bool = True) -> None:
        self._registry = registry
        self._use_psutil = use_psutil

    def sample(self) -> BatteryInfo:
        for description in self._registry.descriptions():
            if description.get(TYPE) == INTERNAL_BATTERY:
                return battery_from_description(description)
        if self._use_psutil:
            return battery_from_psutil()
        return BatteryInfo()


class UPSCollector:
    """Attached UPS state plus the label of the source currently in use."""

    def __init__(self, registry: PowerSourceRegistry) -> None:
        self._registry = registry

    def sample(self) -> UPSInfo:
        descriptions = self._registry.descriptions()
        power_source = self._registry.drawing_from()
        for description in descriptions:
            if description.get(TYPE) != UPS_TYPE:
                continue
            return UPSInfo(
                present=power_source is not PowerSource.UNKNOWN,
                name=description.get(NAME) or "UPS",
                is_charging=bool(description.get(IS_CHARGING, False)),
                charge_level=max(0.0, _float(description, CURRENT_CAPACITY)),
                time_remaining=_float(description, TIME_TO_EMPTY),
                power_source=power_source,
                manufacturer=description.get("Manufacturer") or "Unknown",
                model=description.get("Model") or "Unknown",
                serial_number=description.get("SerialNumber") or "Unknown",
                voltage=max(0.0, _float(description, "Voltage")),
                load_percentage=max(0.0, _float(description, "Load Percentage")),
            )
        return UPSInfo.absent(power_source)


# Heuristic model constants, watts.
IDLE_POWER = 5.0
MAX_POWER = 85.0
# Share of measured adapter power attributed to CPU and GPU.
ADAPTER_CPU_SHARE = 0.4
ADAPTER_GPU_SHARE = 0.2

_MACMON_COMPONENTS = ("cpu_power", "gpu_power", "ane_power", "ram_power", "gpu_ram_power")


def power_from_macmon(sample: dict[str, Any]) -> PowerConsumptionInfo:
    components = {key: number(sample, key) or 0.0 for key in _MACMON_COMPONENTS}
    system_power = number(sample, "sys_power")
    return PowerConsumptionInfo(
        cpu_power=max(0.0, components["cpu_power"]),
        gpu_power=max(0.0, components["gpu_power"]),
        total_system_power=max(0.0, system_power if system_power is not None else sum(components.values())),
        is_estimate=system_power is None,
    )


def adapter_watts(descriptions: list[dict[str, Any]]) -> float | None:
    """
    Measured input power from power-source descriptions.

    The AC descriptor's adapter details give watts directly, or volts and amps
    in mV/mA. A positive instantaneous power on any source wins.
    """
    watts = None
    for description in descriptions:
        if description.get(POWER_SOURCE_STATE) == PowerSource.AC.value:
            details = description.get("AdapterDetails")
            if isinstance(details, dict):
                direct = _float(details, "Watts", default=math.nan)
                voltage = _float(details, "Voltage", default=math.nan)
                current = _float(details, "Current", default=math.nan)
                if not math.isnan(direct):
                    watts = direct
                elif not math.isnan(voltage) and not math.isnan(current):
                    watts = (voltage / 1000.0) * (current / 1000.0)

        instantaneous = _float(description, "InstantaneousPower")
        if instantaneous > 0:
            watts = instantaneous
    return watts if watts is not None and watts > 0 else None


def estimate_power(cpu_usage: float) -> PowerConsumptionInfo:
    """Quadratic idle-to-ceiling model of system draw from CPU usage."""
    load = min(100.0, max(0.0, cpu_usage)) / 100.0
    total = IDLE_POWER + (MAX_POWER - IDLE_POWER) * load * load
    return PowerConsumptionInfo(
        cpu_power=total * (0.45 + load * 0.05),
        gpu_power=total * (0.20 - load * 0.05),
        total_system_power=total,
        is_estimate=True,
    )


class PowerCollector:
    """
    Power draw with a three-tier fallback.

    1. ``macmon`` sample, measured when it reports ``sys_power``.
    2. Adapter wattage from the power-source registry, split 40/20 into
       CPU/GPU shares.
    3. Heuristic estimate from CPU usage.

    The estimate uses its own CPU collector, primed here, so that it never
    moves the fast cycle's CPU baseline.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        registry: PowerSourceRegistry | None = None,
        cpu: CpuCollector | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._registry = registry or PowerSourceRegistry(self._runner)
        self._cpu = cpu or CpuCollector()
        self._clock = clock
        self._cpu.sample()

    def sample(self) -> PowerConsumptionInfo:
        info = self.from_macmon() or self.from_registry() or estimate_power(self._cpu.sample())
        return PowerConsumptionInfo(
            cpu_power=info.cpu_power,
            gpu_power=info.gpu_power,
            total_system_power=info.total_system_power,
            timestamp=self._clock(),
            is_estimate=info.is_estimate,
        )

    def from_macmon(self) -> PowerConsumptionInfo | None:
        sample = read_macmon_sample(self._runner)
        if sample is None:
            return None
        return power_from_macmon(sample)

    def from_registry(self) -> PowerConsumptionInfo | None:
        watts = adapter_watts(self._registry.descriptions())
        if watts is None:
            return None
        return PowerConsumptionInfo(
            cpu_power=watts * ADAPTER_CPU_SHARE,
            gpu_power=watts * ADAPTER_GPU_SHARE,
            total_system_power=watts,
            is_estimate=False,
        )
