"""Shared fakes for menustat tests."""

from collections.abc import Sequence

import pytest

from menustat.models import (
    BatteryInfo,
    DiskUsage,
    InterfaceCounters,
    MemoryUsage,
    PowerConsumptionInfo,
    PowerSource,
    ProcessEntry,
    SystemInfo,
    UPSInfo,
)
from menustat.network import NetworkRateEngine
from menustat.sampler import Collectors


class FakeRunner:
    """
    Command runner returning canned output.

    ``outputs`` maps ``(executable, args)`` tuples, or bare executables, to
    stdout text; ``None`` or a missing entry simulates a failed command.
    """

    def __init__(self, outputs: dict | None = None, executables: Sequence[str] = ()) -> None:
        self.outputs = outputs or {}
        self.executables = set(executables)
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def run(self, executable: str, args: Sequence[str] = ()) -> str | None:
        self.calls.append((executable, tuple(args)))
        key = (executable, tuple(args))
        if key in self.outputs:
            return self.outputs[key]
        return self.outputs.get(executable)

    def exists(self, executable: str) -> bool:
        return executable in self.executables


class FakeCounters:
    """Interface counters that tests can change between samples."""

    def __init__(self, counters: dict[str, tuple[int, int]]) -> None:
        self.set(counters)

    def set(self, counters: dict[str, tuple[int, int]]) -> None:
        self.counters = {name: InterfaceCounters(*pair) for name, pair in counters.items()}

    def __call__(self) -> dict[str, InterfaceCounters]:
        return dict(self.counters)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class RecordingDelivery:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.sent: list[dict] = []

    def send(self, subject, body, to_address, from_address, from_name) -> bool:
        self.sent.append(
            {
                "subject": subject,
                "body": body,
                "to": to_address,
                "from": from_address,
                "from_name": from_name,
            }
        )
        return self.result


class MutableUPS:
    def __init__(self, info: UPSInfo) -> None:
        self.info = info

    def __call__(self) -> UPSInfo:
        return self.info


def ups_on(source: PowerSource, charge: float = 100.0) -> UPSInfo:
    return UPSInfo(
        present=True,
        name="Back-UPS ES 700",
        charge_level=charge,
        time_remaining=42.0,
        power_source=source,
    )


def make_collectors(ups=None, counters: FakeCounters | None = None, power=None) -> Collectors:
    counters = counters or FakeCounters({"en0": (1000, 500)})
    return Collectors(
        cpu=lambda: 12.5,
        temperature=lambda: 48.0,
        memory=lambda: MemoryUsage(used_gb=8.0, total_gb=16.0),
        disk=lambda: DiskUsage(free_gb=200.0, total_gb=500.0),
        network=NetworkRateEngine(FakeRunner(), read_counters=counters),
        top_cpu=lambda count: [ProcessEntry(pid=42, name="WindowServer", cpu_percent=12.0, memory_percent=1.5)][:count],
        top_memory=lambda count: [ProcessEntry(pid=7, name="Safari", cpu_percent=0.5, memory_percent=9.1)][:count],
        ups=ups or (lambda: UPSInfo.absent(PowerSource.AC)),
        battery=lambda: BatteryInfo(present=True, name="InternalBattery-0", charge_level=80.0, time_remaining=120.0),
        system=lambda: SystemInfo(model_name="MacBook Pro", chip="Apple M2", uptime=3600.0),
        power=power or (lambda: PowerConsumptionInfo(cpu_power=4.0, gpu_power=2.0, total_system_power=12.0, is_estimate=False)),
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()
