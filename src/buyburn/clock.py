"""Clocks: wall-clock seconds for production, a settable clock for paper runs."""

from __future__ import annotations

import time


def wall_clock() -> int:
    return int(time.time())


class ManualClock:
    """Monotonic clock advanced explicitly by the caller."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards: {}".format(seconds))
        self.now += seconds
        return self.now
