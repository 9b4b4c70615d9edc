"""Top-N process rankings by CPU and by memory."""

import logging
from collections.abc import Iterable, Iterator

import psutil

from menustat.commands import CommandRunner
from menustat.models import ProcessEntry

logger = logging.getLogger(__name__)

PS = "/bin/ps"
CPU_PS_ARGS = ["-A", "-o", "pid,%cpu,%mem,comm", "-c"]
MEMORY_PS_ARGS = ["-A", "-m", "-o", "pid,%mem,%cpu,comm", "-c"]

DEFAULT_COUNT = 5
NOISE_FLOOR = 0.1
MEMORY_SCAN_SLACK = 5


def parse_ps_rows(output: str, memory_first: bool = False) -> Iterator[ProcessEntry]:
    """
    Parse ``ps`` rows of ``pid, a, b, command`` after the header line.

    ``a``/``b`` are ``%cpu``/``%mem``, or the reverse when ``memory_first``.
    Rows with too few columns or non-numeric fields are skipped.
    """
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 4:
            continue
        try:
            pid = int(parts[0])
            first = float(parts[1].replace("%", ""))
            second = float(parts[2].replace("%", ""))
        except ValueError:
            continue
        cpu, mem = (second, first) if memory_first else (first, second)
        yield ProcessEntry(pid=pid, name=" ".join(parts[3:]), cpu_percent=cpu, memory_percent=mem)


def rank_by_cpu(rows: Iterable[ProcessEntry], count: int = DEFAULT_COUNT) -> list[ProcessEntry]:
    """Busiest ``count`` rows; idle rows are kept only until ``count`` candidates exist."""
    kept: list[ProcessEntry] = []
    for row in rows:
        if row.cpu_percent > NOISE_FLOOR or len(kept) < count:
            kept.append(row)
    return sorted(kept, key=lambda p: p.cpu_percent, reverse=True)[:count]


def rank_by_memory(rows: Iterable[ProcessEntry], count: int = DEFAULT_COUNT) -> list[ProcessEntry]:
    """
    First ``count`` rows above the noise floor, in source order.

    The rows must already be sorted by memory; only the first
    ``count + 5`` are looked at.
    """
    kept: list[ProcessEntry] = []
    for index, row in enumerate(rows):
        if index >= count + MEMORY_SCAN_SLACK:
            break
        if row.memory_percent > NOISE_FLOOR:
            kept.append(row)
    return kept[:count]


def _psutil_rows() -> list[ProcessEntry]:
    rows = []
    for proc in psutil.process_iter(attrs=["pid", "name", "cpu_percent", "memory_percent"]):
        info = proc.info
        rows.append(
            ProcessEntry(
                pid=info.get("pid", 0),
                name=info.get("name") or "",
                cpu_percent=round(info.get("cpu_percent") or 0.0, 1),
                memory_percent=round(info.get("memory_percent") or 0.0, 1),
            )
        )
    return rows


class ProcessRanker:
    """Top-N process lists read from ``ps``, or psutil where ``ps`` fails."""

    def __init__(self, runner: CommandRunner | None = None, count: int = DEFAULT_COUNT) -> None:
        self._runner = runner or CommandRunner()
        self.count = count

    def top_cpu(self, count: int | None = None) -> list[ProcessEntry]:
        count = count or self.count
        output = self._runner.run(PS, CPU_PS_ARGS)
        if output is None:
            logger.debug("ps unavailable, ranking CPU usage from psutil")
            return rank_by_cpu(self._fallback_rows(), count)
        return rank_by_cpu(parse_ps_rows(output), count)

    def top_memory(self, count: int | None = None) -> list[ProcessEntry]:
        count = count or self.count
        output = self._runner.run(PS, MEMORY_PS_ARGS)
        if output is None:
            logger.debug("ps unavailable, ranking memory usage from psutil")
            rows = sorted(self._fallback_rows(), key=lambda p: p.memory_percent, reverse=True)
            return rank_by_memory(rows, count)
        return rank_by_memory(parse_ps_rows(output, memory_first=True), count)

    @staticmethod
    def _fallback_rows() -> list[ProcessEntry]:
        try:
            return _psutil_rows()
        except psutil.Error as exc:
            logger.debug("psutil process listing failed: %s", exc)
            return []
