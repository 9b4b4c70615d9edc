"""Samples from the ``macmon`` power-metrics tool, when installed."""

import json
import logging
from typing import Any

from menustat.commands import CommandRunner

logger = logging.getLogger(__name__)

MACMON_PATHS = (
    "/opt/homebrew/bin/macmon",  # Homebrew, Apple Silicon
    "/usr/local/bin/macmon",  # Homebrew, Intel
    "/usr/bin/macmon",
    "/opt/local/bin/macmon",  # MacPorts
)
MACMON_ARGS = ["pipe", "-s", "1"]


def parse_macmon_output(output: str) -> dict[str, Any] | None:
    """First JSON object emitted by ``macmon pipe``; one object per line."""
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            sample = json.loads(line)
        except json.JSONDecodeError:
            return None
        return sample if isinstance(sample, dict) else None
    return None


def read_macmon_sample(runner: CommandRunner) -> dict[str, Any] | None:
    """Run the first installed macmon for one sample; ``None`` if none works."""
    for path in MACMON_PATHS:
        if not runner.exists(path):
            continue
        output = runner.run(path, MACMON_ARGS)
        if output is None:
            continue
        sample = parse_macmon_output(output)
        if sample is not None:
            return sample
        logger.debug("Unparseable output from %s", path)
    return None


def number(sample: dict[str, Any], key: str) -> float | None:
    value = sample.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)
