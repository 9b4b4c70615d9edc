"""Running external platform commands."""

import logging
import os
import subprocess
from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class CommandRunner:
    """
    Run an external command and capture its stdout.

    Every failure mode (launch error, non-zero exit, timeout) is mapped to
    ``None`` so collectors have one failure path to handle. Tests substitute
    a runner that returns canned output.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def run(self, executable: str, args: Sequence[str] = ()) -> str | None:
        try:
            completed = subprocess.run(
                [executable, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.debug("%s timed out after %.1fs", executable, self.timeout)
            return None
        except OSError as exc:
            logger.debug("Could not launch %s: %s", executable, exc)
            return None

        if completed.returncode != 0:
            logger.debug("%s exited with status %d", executable, completed.returncode)
            return None
        return completed.stdout

    def exists(self, executable: str) -> bool:
        return os.path.isfile(executable) and os.access(executable, os.X_OK)
