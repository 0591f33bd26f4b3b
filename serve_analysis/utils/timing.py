"""Minimum-interval throttling against a monotonic clock."""

import time
from typing import Callable, Optional

# Frame timestamps spaced exactly one interval apart can undershoot by rounding
INTERVAL_TOLERANCE = 1e-9


class Throttle:
    """
    Gate that opens at most once per min_interval.

    Calls arriving faster than the interval are skipped without error.
    """

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            min_interval: Minimum seconds between accepted calls.
            clock: Monotonic clock, injectable for tests.
        """
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        self.min_interval = min_interval
        self.clock = clock
        self._last: Optional[float] = None

    def ready(self, now: Optional[float] = None) -> bool:
        """Return True and record the time if the interval has elapsed."""
        now = self.clock() if now is None else now
        if self._last is not None and now - self._last < self.min_interval - INTERVAL_TOLERANCE:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None
