"""Time source for the session engine.

All session timestamps are unix seconds. Services take a ``Clock`` so tests
can pin and advance time deterministically.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time in unix seconds."""

    def now(self) -> int: ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> None:
        self._now += int(seconds)


system_clock = SystemClock()
