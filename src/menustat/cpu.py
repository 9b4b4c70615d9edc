"""Processor utilization from host-wide cumulative ticks."""

import threading
from collections.abc import Callable
from dataclasses import dataclass

import psutil


@dataclass(slots=True, frozen=True)
class CpuTicks:
    """Cumulative host-wide processor time per state."""

    user: float
    system: float
    idle: float
    nice: float

    @property
    def total(self) -> float:
        return self.user + self.system + self.idle + self.nice


def read_cpu_ticks() -> CpuTicks:
    times = psutil.cpu_times()
    return CpuTicks(
        user=times.user,
        system=times.system,
        idle=times.idle,
        nice=getattr(times, "nice", 0.0),
    )


def usage_between(previous: CpuTicks, current: CpuTicks) -> float:
    """Busy share of the elapsed ticks, 0.0 when no time elapsed."""
    total = current.total - previous.total
    if total <= 0:
        return 0.0
    busy = (
        (current.user - previous.user)
        + (current.system - previous.system)
        + (current.nice - previous.nice)
    )
    return min(100.0, max(0.0, busy / total * 100.0))


class CpuCollector:
    """
    Delta-based CPU usage.

    Each call differences the current ticks against the stored baseline and
    then replaces the baseline. The first call has nothing to compare with and
    returns 0.0. Calls are serialized; the read-then-write of the baseline is
    not safe to interleave.
    """

    def __init__(self, read_ticks: Callable[[], CpuTicks] = read_cpu_ticks) -> None:
        self._read_ticks = read_ticks
        self._previous: CpuTicks | None = None
        self._lock = threading.Lock()

    def sample(self) -> float:
        with self._lock:
            current = self._read_ticks()
            previous, self._previous = self._previous, current
            if previous is None:
                return 0.0
            return usage_between(previous, current)

    def reset(self) -> None:
        with self._lock:
            self._previous = None
