"""menustat - terminal dashboard subscribing to the sampler."""

from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Sparkline, Static

from menustat.config import SamplerConfig
from menustat.formatting import (
    RateUnit,
    format_duration,
    format_rate,
    format_temperature,
    format_time_remaining,
)
from menustat.models import ProcessEntry, Snapshot, SnapshotUpdate
from menustat.sampler import Sampler


class SortKey(Enum):
    """Which ranking the process table shows."""

    CPU = "cpu"
    MEM = "mem"


def _bar(percent: float, colour: str, width: int = 20) -> str:
    filled = min(width, max(0, int(percent / 100 * width)))
    return f"[{colour}]█[/{colour}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing the scalar statistics of the latest snapshot."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 7;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._snapshot: Snapshot = Snapshot.empty()
        self._rate_unit: RateUnit = RateUnit.BYTES
        self._auto_scale: bool = True

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Static(self._get_load_info(), id="load-info"),
            Static(self._get_power_info(), id="power-info"),
        )

    def update_stats(self, snapshot: Snapshot, rate_unit: RateUnit, auto_scale: bool) -> None:
        self._snapshot = snapshot
        self._rate_unit = rate_unit
        self._auto_scale = auto_scale
        self._refresh_display()

    def _refresh_display(self) -> None:
        try:
            self.query_one("#load-info", Static).update(self._get_load_info())
            self.query_one("#power-info", Static).update(self._get_power_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_load_info(self) -> str:
        snap = self._snapshot
        if not snap.data_loaded:
            return "Loading..."

        mem_percent = snap.memory.used_gb / snap.memory.total_gb * 100 if snap.memory.total_gb else 0.0
        disk_used = snap.disk.total_gb - snap.disk.free_gb
        disk_percent = disk_used / snap.disk.total_gb * 100 if snap.disk.total_gb else 0.0
        up_value, up_unit = format_rate(snap.network.upload, self._rate_unit, self._auto_scale)
        down_value, down_unit = format_rate(snap.network.download, self._rate_unit, self._auto_scale)

        return (
            f"CPU \\[{_bar(snap.cpu_usage, 'green')}] {snap.cpu_usage:5.1f}%  "
            f"{format_temperature(snap.cpu_temperature)}\n"
            f"Mem \\[{_bar(mem_percent, 'cyan')}] {snap.memory.used_gb:.1f}/{snap.memory.total_gb:.1f} GB\n"
            f"Disk\\[{_bar(disk_percent, 'yellow')}] {snap.disk.free_gb:.1f} GB free of {snap.disk.total_gb:.1f} GB\n"
            f"Net ↑ {up_value} {up_unit}  ↓ {down_value} {down_unit}"
        )

    def _get_power_info(self) -> str:
        snap = self._snapshot
        if not snap.data_loaded:
            return ""

        power = snap.power
        estimate = " (est.)" if power.is_estimate else ""
        lines = [
            f"Power {power.total_system_power:.1f} W{estimate}  "
            f"CPU {power.cpu_power:.1f} W  GPU {power.gpu_power:.1f} W",
        ]
        if snap.battery.present:
            state = "charging" if snap.battery.is_charging else "on battery"
            lines.append(
                f"Battery {snap.battery.charge_level:.0f}% {state}, "
                f"{format_time_remaining(snap.battery.time_remaining)}"
            )
        if snap.ups.present:
            lines.append(f"UPS {snap.ups.name} {snap.ups.charge_level:.0f}% - {snap.ups.power_source.value}")
        lines.append(f"{snap.system.model_name} ({snap.system.chip})")
        lines.append(f"Uptime: {format_duration(snap.system.uptime)}")
        return "\n".join(lines)


class ProcessTable(Container):
    """Container for the top-process table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._sort_key: SortKey = SortKey.CPU

    @property
    def sort_key(self) -> SortKey:
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Toggle between the CPU and memory rankings and return the new key."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.add_column("PID", key="pid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("Command", key="command")

    def update_processes(self, snapshot: Snapshot) -> None:
        """
        Show the ranking selected by the sort key.

        Rows are rebuilt in ranking order since the top-N changes every cycle.
        """
        processes: tuple[ProcessEntry, ...] = (
            snapshot.top_cpu_processes if self._sort_key is SortKey.CPU else snapshot.top_memory_processes
        )
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in processes:
            table.add_row(
                str(proc.pid),
                f"{proc.cpu_percent:5.1f}",
                f"{proc.memory_percent:5.1f}",
                proc.name[:50],
                key=str(proc.pid),
            )


class MenustatApp(App):
    """Live view of the telemetry snapshots."""

    TITLE = "menustat"
    SUB_TITLE = "Host telemetry"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 7;
    }

    Horizontal {
        height: auto;
    }

    #load-info {
        width: 1fr;
        padding-right: 2;
    }

    #power-info {
        width: 1fr;
        padding-left: 2;
    }

    #cpu-sparkline {
        height: 3;
        margin: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "CPU/Memory"),
        ("u", "units", "Bytes/Bits"),
        ("a", "auto_scale", "Auto-scale"),
    ]

    def __init__(self, sampler: Sampler | None = None, config: SamplerConfig | None = None) -> None:
        super().__init__()
        self._sampler = sampler or Sampler(config)
        self._update_queue: Queue[SnapshotUpdate] = Queue()
        self._unsubscribe = self._sampler.subscribe(self._update_queue.put)

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield Sparkline([], id="cpu-sparkline")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Load every statistic once in the background, then sample periodically."""
        self.run_worker(self._sampler.refresh_all, thread=True, exclusive=True)
        self._sampler.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        # Drain the queue; only the newest snapshot matters.
        update = None
        while True:
            try:
                update = self._update_queue.get_nowait()
            except Empty:
                break
        if update is not None:
            self._update_ui(update.snapshot)

    def _update_ui(self, snapshot: Snapshot) -> None:
        config = self._sampler.config
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(
                snapshot, config.rate_unit, config.auto_scale
            )
            self.query_one("#cpu-sparkline", Sparkline).data = list(snapshot.cpu_history)
            self.query_one(ProcessTable).update_processes(snapshot)
        except Exception:
            pass  # Screen is being torn down

    def action_sort(self) -> None:
        table = self.query_one(ProcessTable)
        key = table.cycle_sort()
        table.update_processes(self._sampler.latest)
        self.notify(f"Sort: {key.value.upper()}")

    def action_units(self) -> None:
        config = self._sampler.config
        unit = RateUnit.BITS if config.rate_unit is RateUnit.BYTES else RateUnit.BYTES
        self._sampler.apply_config(config.with_changes(rate_unit=unit))
        self._update_ui(self._sampler.latest)

    def action_auto_scale(self) -> None:
        config = self._sampler.config
        self._sampler.apply_config(config.with_changes(auto_scale=not config.auto_scale))
        self._update_ui(self._sampler.latest)

    def action_quit(self) -> None:
        """Stop sampling and exit."""
        self._unsubscribe()
        self._sampler.stop()
        self.exit()

