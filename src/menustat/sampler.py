"""Telemetry sampling engine for menustat."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from menustat.commands import CommandRunner
from menustat.config import MIN_INTERVAL, SamplerConfig
from menustat.cpu import CpuCollector
from menustat.delivery import LogDelivery, NotificationDelivery
from menustat.history import HistoryBuffer
from menustat.models import (
    BatteryInfo,
    DiskUsage,
    MemoryUsage,
    NetworkRates,
    PowerConsumptionInfo,
    ProcessEntry,
    Snapshot,
    SnapshotUpdate,
    SystemInfo,
    UPSInfo,
    UpdateKind,
)
from menustat.network import NetworkRateEngine
from menustat.notifier import PowerChangeNotifier
from menustat.power import BatteryCollector, PowerCollector, PowerSourceRegistry, UPSCollector
from menustat.processes import ProcessRanker
from menustat.system import SystemInfoCollector, TemperatureReader, collect_disk, collect_memory

logger = logging.getLogger(__name__)

Subscriber = Callable[[SnapshotUpdate], None]


@dataclass(slots=True)
class Collectors:
    """The collectors a sampler drives; each one is a plain callable."""

    cpu: Callable[[], float]
    temperature: Callable[[], float]
    memory: Callable[[], MemoryUsage]
    disk: Callable[[], DiskUsage]
    network: NetworkRateEngine
    top_cpu: Callable[[int], list[ProcessEntry]]
    top_memory: Callable[[int], list[ProcessEntry]]
    ups: Callable[[], UPSInfo]
    battery: Callable[[], BatteryInfo]
    system: Callable[[], SystemInfo]
    power: Callable[[], PowerConsumptionInfo]

    @classmethod
    def default(cls, runner: CommandRunner | None = None) -> "Collectors":
        runner = runner or CommandRunner()
        registry = PowerSourceRegistry(runner)
        ranker = ProcessRanker(runner)
        return cls(
            cpu=CpuCollector().sample,
            temperature=TemperatureReader(runner).read,
            memory=collect_memory,
            disk=collect_disk,
            network=NetworkRateEngine(runner),
            top_cpu=ranker.top_cpu,
            top_memory=ranker.top_memory,
            ups=UPSCollector(registry).sample,
            battery=BatteryCollector(registry).sample,
            system=SystemInfoCollector(runner).sample,
            power=PowerCollector(runner, registry).sample,
        )


_FALLBACKS: dict[str, Callable[[], Any]] = {
    "cpu": float,
    "temperature": float,
    "memory": MemoryUsage,
    "disk": DiskUsage,
    "network": NetworkRates,
    "top_cpu": list,
    "top_memory": list,
    "ups": UPSInfo.absent,
    "battery": BatteryInfo,
    "system": SystemInfo,
    "power": PowerConsumptionInfo,
}

FAST_COLLECTORS = (
    "cpu",
    "temperature",
    "memory",
    "disk",
    "network",
    "top_cpu",
    "top_memory",
    "ups",
    "battery",
    "system",
)


class _PeriodicTimer:
    """Daemon thread that calls ``callback`` every ``interval`` seconds until stopped."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str) -> None:
        self._interval = interval
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name=name)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            self._callback()


class Sampler:
    """
    Drives the collectors on two cadences and publishes immutable snapshots.

    The fast cycle gathers every general statistic; the slow cycle only
    measures power draw and overwrites the power field of the latest snapshot.
    Timers run on daemon threads and only hand work to a worker pool, so no
    collector ever blocks a timer or a subscriber. ``refresh_all`` runs every
    collector at once for cold start and configuration changes.

    Subscribers receive ``SnapshotUpdate`` objects; a ``Queue.put`` works as a
    subscriber.
    """

    def __init__(
        self,
        config: SamplerConfig | None = None,
        collectors: Collectors | None = None,
        delivery: NotificationDelivery | None = None,
        notifier: PowerChangeNotifier | None = None,
        max_workers: int = 4,
    ) -> None:
        self._config = config or SamplerConfig()
        self._collectors = collectors or Collectors.default()
        self._executor: Executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="menustat")
        self._notifier = notifier or PowerChangeNotifier(
            delivery or LogDelivery(), self._config, executor=self._executor
        )

        self._fast_interval = max(MIN_INTERVAL, self._config.fast_interval)
        self._slow_interval = max(MIN_INTERVAL, self._config.slow_interval)

        self._state_lock = threading.Lock()
        self._publish_lock = threading.Lock()
        self._fast_in_flight = threading.Lock()
        self._slow_in_flight = threading.Lock()
        self._pending_lock = threading.Lock()
        self._fast_pending: int | None = None
        self._slow_pending: int | None = None
        self._running = False
        self._generation = 0
        self._fast_timer: _PeriodicTimer | None = None
        self._slow_timer: _PeriodicTimer | None = None

        self._subscribers: list[Subscriber] = []
        self._latest = Snapshot.empty()
        self._cpu_history = HistoryBuffer()
        self._temperature_history = HistoryBuffer()
        self._upload_history = HistoryBuffer()
        self._download_history = HistoryBuffer()

        self._collectors.network.refresh_interfaces()

    @property
    def config(self) -> SamplerConfig:
        return self._config

    @property
    def notifier(self) -> PowerChangeNotifier:
        return self._notifier

    @property
    def fast_interval(self) -> float:
        return self._fast_interval

    @property
    def slow_interval(self) -> float:
        return self._slow_interval

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def latest(self) -> Snapshot:
        """Most recently published snapshot."""
        return self._latest

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every publication; returns an unsubscribe function."""
        with self._publish_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._publish_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def start(self) -> None:
        """Sample both cycles immediately, then arm the periodic timers."""
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._generation += 1
            generation = self._generation

            self._trigger_fast(generation, immediate=True)
            self._trigger_slow(generation, immediate=True)
            self._fast_timer = _PeriodicTimer(
                self._fast_interval, lambda: self._trigger_fast(generation), "menustat-fast"
            )
            self._slow_timer = _PeriodicTimer(
                self._slow_interval, lambda: self._trigger_slow(generation), "menustat-slow"
            )
            self._fast_timer.start()
            self._slow_timer.start()
        logger.debug("Sampler started (fast %.1fs, slow %.1fs)", self._fast_interval, self._slow_interval)

    def stop(self, timeout: float | None = 1.0) -> None:
        """
        Cancel both timers. In-flight collectors finish, but their results
        are discarded.
        """
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            timers = [self._fast_timer, self._slow_timer]
            self._fast_timer = self._slow_timer = None

        for timer in timers:
            if timer is not None:
                timer.cancel()
        for timer in timers:
            if timer is not None:
                timer.join(timeout=timeout)
        logger.debug("Sampler stopped")

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "Sampler":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def set_fast_interval(self, interval: float) -> None:
        """Restart sampling with a new fast interval."""
        was_running = self._running
        self.stop()
        self._fast_interval = max(MIN_INTERVAL, interval)
        if was_running:
            self.start()

    def set_slow_interval(self, interval: float) -> None:
        """Re-arm only the power timer, sampling power once right away."""
        with self._state_lock:
            self._slow_interval = max(MIN_INTERVAL, interval)
            if not self._running:
                return
            old_timer = self._slow_timer
            generation = self._generation
            self._trigger_slow(generation, immediate=True)
            self._slow_timer = _PeriodicTimer(
                self._slow_interval, lambda: self._trigger_slow(generation), "menustat-slow"
            )
            self._slow_timer.start()
        if old_timer is not None:
            old_timer.cancel()

    def apply_config(self, config: SamplerConfig) -> None:
        """Adopt new settings, re-arming or re-sampling only what they affect."""
        previous, self._config = self._config, config
        self._notifier.config = config

        if config.fast_interval != previous.fast_interval:
            self.set_fast_interval(config.fast_interval)
        if config.slow_interval != previous.slow_interval:
            self.set_slow_interval(config.slow_interval)
        interface_changed = config.selected_interface != previous.selected_interface
        if interface_changed:
            self.refresh_interfaces()
        if interface_changed or config.process_count != previous.process_count:
            self.refresh_all()

    def refresh_interfaces(self) -> list[str]:
        """Re-discover network interfaces; the rate baseline is re-seeded with them."""
        return self._collectors.network.refresh_interfaces()

    def refresh_all(self) -> Snapshot:
        """
        Run every collector concurrently and publish one merged snapshot.

        Blocks until the snapshot is published and returns it; afterwards
        ``data_loaded`` is True.
        """
        names = (*FAST_COLLECTORS, "power")
        with ThreadPoolExecutor(max_workers=len(names), thread_name_prefix="menustat-refresh") as pool:
            futures = {name: pool.submit(self._collect, name) for name in names}
            results = {name: future.result() for name, future in futures.items()}
        return self._publish_full(results, generation=None)

    def _trigger_fast(self, generation: int, immediate: bool = False) -> None:
        with self._pending_lock:
            if not self._fast_in_flight.acquire(blocking=False):
                if immediate:
                    # Re-run for this generation once the running cycle ends.
                    self._fast_pending = generation
                logger.debug("Previous fast cycle still running, skipping tick")
                return
        try:
            self._executor.submit(self._run_fast, generation)
        except RuntimeError:
            self._fast_in_flight.release()

    def _trigger_slow(self, generation: int, immediate: bool = False) -> None:
        with self._pending_lock:
            if not self._slow_in_flight.acquire(blocking=False):
                if immediate:
                    self._slow_pending = generation
                logger.debug("Previous power cycle still running, skipping tick")
                return
        try:
            self._executor.submit(self._run_slow, generation)
        except RuntimeError:
            self._slow_in_flight.release()

    def _run_fast(self, generation: int) -> None:
        try:
            results = {name: self._collect(name) for name in FAST_COLLECTORS}
            self._publish_full(results, generation)
        except Exception:
            logger.exception("Fast sampling cycle failed")
        finally:
            with self._pending_lock:
                self._fast_in_flight.release()
                pending, self._fast_pending = self._fast_pending, None
            if pending is not None and self._accepts(pending):
                self._trigger_fast(pending)

    def _run_slow(self, generation: int) -> None:
        try:
            self._publish_power(self._collect("power"), generation)
        except Exception:
            logger.exception("Power sampling cycle failed")
        finally:
            with self._pending_lock:
                self._slow_in_flight.release()
                pending, self._slow_pending = self._slow_pending, None
            if pending is not None and self._accepts(pending):
                self._trigger_slow(pending)

    def _collect(self, name: str) -> Any:
        try:
            if name == "network":
                return self._collectors.network.sample(self._config.selected_interface)
            if name in ("top_cpu", "top_memory"):
                return getattr(self._collectors, name)(self._config.process_count)
            return getattr(self._collectors, name)()
        except Exception:
            logger.exception("Collector %s failed", name)
            return _FALLBACKS[name]()

    def _accepts(self, generation: int | None) -> bool:
        if generation is None:
            return True
        return self._running and generation == self._generation

    def _publish_full(self, results: dict[str, Any], generation: int | None) -> Snapshot:
        with self._publish_lock:
            if not self._accepts(generation):
                logger.debug("Discarding results of a cancelled cycle")
                return self._latest

            cpu = results["cpu"]
            temperature = results["temperature"]
            network: NetworkRates = results["network"]
            self._cpu_history.append(cpu)
            self._temperature_history.append(temperature)
            self._upload_history.append(network.upload)
            self._download_history.append(network.download)

            snapshot = Snapshot(
                cpu_usage=cpu,
                cpu_temperature=temperature,
                memory=results["memory"],
                disk=results["disk"],
                network=network,
                top_cpu_processes=tuple(results["top_cpu"]),
                top_memory_processes=tuple(results["top_memory"]),
                ups=results["ups"],
                battery=results["battery"],
                power=results.get("power", self._latest.power),
                system=results["system"],
                cpu_history=self._cpu_history.snapshot(),
                cpu_temperature_history=self._temperature_history.snapshot(),
                upload_history=self._upload_history.snapshot(),
                download_history=self._download_history.snapshot(),
                network_interfaces=tuple(self._collectors.network.interfaces),
                timestamp=datetime.now(),
                data_loaded=True,
            )
            self._latest = snapshot
            self._fan_out(SnapshotUpdate(UpdateKind.FULL, snapshot))
            notification = self._notifier.evaluate(snapshot)

        # Delivery may block on the network; never hold the publish lock for it.
        if notification is not None:
            self._notifier.dispatch(notification)
        return snapshot

    def _publish_power(self, power: PowerConsumptionInfo, generation: int) -> None:
        with self._publish_lock:
            if not self._accepts(generation):
                logger.debug("Discarding power sample of a cancelled cycle")
                return
            self._latest = replace(self._latest, power=power)
            self._fan_out(SnapshotUpdate(UpdateKind.POWER, self._latest))

    def _fan_out(self, update: SnapshotUpdate) -> None:
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception:
                logger.exception("Subscriber %r failed", callback)
