"""Millisecond clocks used to timestamp field interactions."""

import time
from typing import Callable

Clock = Callable[[], int]
"""A zero-argument callable returning epoch milliseconds."""


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ManualClock:
    """Clock that only moves when told to. Used by tests and the simulator.

    Examples:
        >>> clock = ManualClock(1_000)
        >>> clock.advance(250)
        1250
        >>> clock()
        1250
    """

    def __init__(self, start_ms: int = 0) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        if ms < 0:
            raise ValueError("ManualClock cannot move backwards")
        self.now += ms
        return self.now


__all__ = ["Clock", "system_clock", "ManualClock"]
