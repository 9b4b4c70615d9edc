"""Network throughput from cumulative interface counters."""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping

import psutil

from menustat.commands import CommandRunner
from menustat.models import InterfaceCounters, NetworkRates

logger = logging.getLogger(__name__)

ALL_INTERFACES = "All"
IFCONFIG = "/sbin/ifconfig"

_IGNORED_INTERFACES = {"gif0", "stf0"}

CounterReader = Callable[[], Mapping[str, InterfaceCounters]]


def read_interface_counters() -> dict[str, InterfaceCounters]:
    counters = psutil.net_io_counters(pernic=True)
    return {
        name: InterfaceCounters(bytes_in=io.bytes_recv, bytes_out=io.bytes_sent)
        for name, io in counters.items()
    }


def is_bond_interface(name: str) -> bool:
    return name.startswith("bond")


def visible_interfaces(names: Iterable[str]) -> list[str]:
    """Interfaces worth offering: everything but loopback and tunnel stubs."""
    return sorted(
        name for name in names if not name.startswith("lo") and name not in _IGNORED_INTERFACES
    )


def parse_bond_members(output: str, known: Iterable[str]) -> list[str]:
    """Member interfaces from ``ifconfig <bond>`` lines like ``member: en0 flags=...``."""
    known = set(known)
    members = []
    for line in output.splitlines():
        line = line.strip()
        if "member:" not in line:
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1] in known:
            members.append(parts[1])
    return members


def guess_bond_members(bond: str, known: Iterable[str]) -> list[str]:
    """
    Best-effort membership by naming convention.

    ``bond0`` is assumed to aggregate ``en0``/``en1`` and ``bondN`` the pair
    ``en(2N)``/``en(2N+1)``. This is a guess, used only when ``ifconfig``
    does not list members.
    """
    known = set(known)
    suffix = bond.removeprefix("bond")
    if not suffix[:1].isdigit():
        return []
    start = int(suffix[0]) * 2
    return [name for name in (f"en{start}", f"en{start + 1}") if name in known]


class NetworkRateEngine:
    """
    Converts cumulative per-interface counters into bytes-per-second rates.

    Owns the previous-counters baseline and the last sample time. A sample
    and an interface refresh never interleave.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        read_counters: CounterReader = read_interface_counters,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._read_counters = read_counters
        self._clock = clock
        self._lock = threading.Lock()
        self._interfaces: list[str] = []
        self._previous: dict[str, InterfaceCounters] = {}
        self._last_sample_time = clock()

    @property
    def interfaces(self) -> list[str]:
        with self._lock:
            return list(self._interfaces)

    def refresh_interfaces(self) -> list[str]:
        """Re-discover interfaces and re-seed the baseline in one step."""
        with self._lock:
            try:
                raw = self._read_counters()
            except Exception:
                logger.exception("Reading interface counters failed")
                raw = {}
            self._interfaces = visible_interfaces(raw)
            self._previous = self._collect(raw)
            self._last_sample_time = self._clock()
            logger.debug("Tracking interfaces: %s", ", ".join(self._interfaces) or "none")
            return list(self._interfaces)

    def bond_members(self, bond: str) -> list[str]:
        known = self._interfaces
        output = self._runner.run(IFCONFIG, [bond])
        if output is not None:
            members = parse_bond_members(output, known)
            if members:
                return members
        return guess_bond_members(bond, known)

    def sample(self, selected: str = ALL_INTERFACES) -> NetworkRates:
        with self._lock:
            now = self._clock()
            elapsed = now - self._last_sample_time
            try:
                raw = self._read_counters()
            except Exception:
                logger.exception("Reading interface counters failed")
                raw = {}
            current = self._collect(raw)
            previous = self._previous

            # The baseline moves forward even when no rate can be computed.
            self._previous = current
            self._last_sample_time = now

            if elapsed <= 0:
                return NetworkRates()
            delta = self._delta(selected, current, previous)
            return NetworkRates(upload=delta.bytes_out / elapsed, download=delta.bytes_in / elapsed)

    def _collect(self, raw: Mapping[str, InterfaceCounters]) -> dict[str, InterfaceCounters]:
        current = {}
        for name in self._interfaces:
            if is_bond_interface(name):
                current[name] = self._sum(raw, self.bond_members(name))
            else:
                current[name] = raw.get(name, InterfaceCounters())
        return current

    def _delta(
        self,
        selected: str,
        current: Mapping[str, InterfaceCounters],
        previous: Mapping[str, InterfaceCounters],
    ) -> InterfaceCounters:
        if selected == ALL_INTERFACES:
            current_total = self._sum(current, self._interfaces)
            previous_total = self._sum(previous, [name for name in self._interfaces if name in previous])
            return current_total.delta(previous_total)

        if selected in current and selected in previous:
            return current[selected].delta(previous[selected])

        if is_bond_interface(selected):
            total = InterfaceCounters()
            for member in self.bond_members(selected):
                if member in current and member in previous:
                    total = total + current[member].delta(previous[member])
            return total

        return InterfaceCounters()

    @staticmethod
    def _sum(counters: Mapping[str, InterfaceCounters], names: Iterable[str]) -> InterfaceCounters:
        total = InterfaceCounters()
        for name in names:
            total = total + counters.get(name, InterfaceCounters())
        return total
