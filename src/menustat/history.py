"""Bounded history series used for sparklines."""

from collections import deque
from collections.abc import Iterable

HISTORY_CAPACITY = 30


class HistoryBuffer:
    """Fixed-capacity FIFO of floats; the oldest value is evicted first."""

    def __init__(self, capacity: int = HISTORY_CAPACITY, values: Iterable[float] = ()) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._values: deque[float] = deque(values, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._values.maxlen or 0

    def append(self, value: float) -> None:
        self._values.append(value)

    def snapshot(self) -> tuple[float, ...]:
        """Copy of the series in insertion order."""
        return tuple(self._values)

    def __len__(self) -> int:
        return len(self._values)
