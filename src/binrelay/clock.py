"""Time sources.

Batch age checks read the current time through a :class:`Clock` so that
timeout behavior can be driven deterministically in tests.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of wall-clock time in unix seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Clock backed by :func:`time.time`."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(1_700_000_000.0)
        >>> clock.advance(5)
        >>> clock.now()
        1700000005.0
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward."""
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now += seconds

    def set(self, timestamp: float) -> None:
        """Jump to an absolute timestamp."""
        self._now = float(timestamp)
