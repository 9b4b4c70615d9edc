"""Memory, disk, host identification and CPU temperature collectors."""

import logging
import platform
import threading
import time
from collections.abc import Callable
from datetime import datetime

import psutil

from menustat.commands import CommandRunner
from menustat.cpu import CpuCollector
from menustat.macmon import number, read_macmon_sample
from menustat.models import DiskUsage, MemoryUsage, SystemInfo

logger = logging.getLogger(__name__)

GB = 1000 * 1000 * 1000  # decimal gigabytes

SYSTEM_PROFILER = "/usr/sbin/system_profiler"
SYSCTL = "/usr/sbin/sysctl"
PMSET = "/usr/bin/pmset"


def collect_memory() -> MemoryUsage:
    """
    Used and total physical memory.

    "Used" follows the activity-monitor notion of wired + active (+ compressed
    where reported); platforms without those fields fall back to ``used``.
    """
    mem = psutil.virtual_memory()
    wired = getattr(mem, "wired", None)
    active = getattr(mem, "active", None)
    if wired is not None and active is not None:
        used = wired + active + getattr(mem, "compressed", 0)
    else:
        used = mem.used
    return MemoryUsage(used_gb=max(0, used) / GB, total_gb=mem.total / GB)


def collect_disk(path: str = "/") -> DiskUsage:
    try:
        usage = psutil.disk_usage(path)
    except OSError as exc:
        logger.debug("Disk usage for %s unavailable: %s", path, exc)
        return DiskUsage()
    return DiskUsage(free_gb=usage.free / GB, total_gb=usage.total / GB)


def parse_hardware_overview(output: str) -> tuple[str, str]:
    """``(model name, chip)`` from ``system_profiler SPHardwareDataType``."""
    model = chip = "Unknown"
    for line in output.splitlines():
        line = line.strip()
        key, _, value = line.partition(":")
        value = value.strip()
        if not value:
            continue
        if key == "Model Name":
            model = value
        elif key in ("Chip", "Processor Name"):
            chip = value
        if model != "Unknown" and chip != "Unknown":
            break
    return model, chip


class SystemInfoCollector:
    """Host model, chip, OS and kernel versions, boot time and uptime."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner()
        self._hardware: tuple[str, str] | None = None
        self._kernel: str | None = None

    def sample(self) -> SystemInfo:
        model, chip = self._hardware_info()
        boot = psutil.boot_time()
        return SystemInfo(
            model_name=model,
            chip=chip,
            os_version=self._os_version(),
            kernel_version=self._kernel_version(),
            uptime=max(0.0, time.time() - boot),
            boot_time=datetime.fromtimestamp(boot),
        )

    def _hardware_info(self) -> tuple[str, str]:
        # Hardware does not change while we run; read it once it succeeds.
        if self._hardware is not None:
            return self._hardware

        output = self._runner.run(SYSTEM_PROFILER, ["SPHardwareDataType"])
        if output is not None:
            self._hardware = parse_hardware_overview(output)
            return self._hardware

        model = self._runner.run(SYSCTL, ["-n", "hw.model"])
        if model is not None and model.strip():
            self._hardware = (model.strip(), "Unknown")
            return self._hardware
        return platform.machine() or "Unknown", platform.processor() or "Unknown"

    def _kernel_version(self) -> str:
        if self._kernel is None:
            output = self._runner.run(SYSCTL, ["-n", "kern.version"])
            lines = output.splitlines() if output else []
            self._kernel = lines[0].strip() if lines and lines[0].strip() else platform.version()
        return self._kernel or "Unknown"

    @staticmethod
    def _os_version() -> str:
        release = platform.mac_ver()[0]
        if release:
            return f"macOS {release}"
        return platform.platform(terse=True) or "Unknown"


TEMPERATURE_CACHE_SECONDS = 2.0
_MACMON_FLAT_KEYS = ("cpu_temp", "package_temp", "die_temp", "core_temp", "cpu_thermal")
_PSUTIL_SENSOR_NAMES = ("coretemp", "k10temp", "cpu_thermal", "cpu-thermal", "acpitz")


def _plausible(value: float | None) -> bool:
    return value is not None and 0 < value < 150


def temperature_from_macmon(sample: dict) -> float | None:
    nested = sample.get("temp")
    if isinstance(nested, dict):
        value = number(nested, "cpu_temp_avg")
        if _plausible(value):
            return value
    for key in _MACMON_FLAT_KEYS:
        value = number(sample, key)
        if _plausible(value):
            return value
    return None


def temperature_from_thermal_state(output: str) -> float | None:
    """Coarse reading from ``pmset -g therm``: throttled means hot."""
    for line in output.lower().splitlines():
        if "cpu_speed_limit" in line:
            return 45.0 if "100" in line else 85.0
    return None


def estimate_temperature(cpu_usage: float) -> float:
    """Idle around 40 °C, full load around 80 °C."""
    return 40.0 + min(100.0, max(0.0, cpu_usage)) / 100.0 * 40.0


class TemperatureReader:
    """
    CPU temperature in Celsius from the best available source.

    Order: macmon, psutil sensors, the thermal state reported by ``pmset``,
    and finally an estimate from CPU load. Readings are cached briefly.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        cpu: CpuCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._cpu = cpu or CpuCollector()
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: tuple[float, float] | None = None
        self._cpu.sample()

    def read(self) -> float:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._cached[0] < TEMPERATURE_CACHE_SECONDS:
                return self._cached[1]
            value = self._read_uncached()
            self._cached = (now, value)
            return value

    def _read_uncached(self) -> float:
        sample = read_macmon_sample(self._runner)
        if sample is not None:
            value = temperature_from_macmon(sample)
            if value is not None:
                return value

        value = self._from_psutil()
        if value is not None:
            return value

        output = self._runner.run(PMSET, ["-g", "therm"])
        if output is not None:
            value = temperature_from_thermal_state(output)
            if value is not None:
                return value

        return estimate_temperature(self._cpu.sample())

    @staticmethod
    def _from_psutil() -> float | None:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        try:
            sensors = psutil.sensors_temperatures()
        except (OSError, psutil.Error):
            return None
        for name in _PSUTIL_SENSOR_NAMES:
            readings = [entry.current for entry in sensors.get(name, []) if _plausible(entry.current)]
            if readings:
                return sum(readings) / len(readings)
        return None
