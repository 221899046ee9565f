from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Wall-clock time in whole unix seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Logical time that only moves when told to (tests and scenario simulations)."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now += int(seconds)
        return self._now

    def set(self, ts: int) -> None:
        if ts < self._now:
            raise ValueError("cannot move a clock backwards")
        self._now = int(ts)
