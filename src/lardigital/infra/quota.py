"""Fixed-window hourly quotas for paid speech/vision calls.

Quotas fail fast: a caller over the limit gets QuotaExceededError and is
expected to tell the sender, never to queue the work.
"""

import threading
import time
from typing import Callable

WINDOW_SECONDS = 3600


class QuotaExceededError(Exception):
    """Raised when an hourly quota is exhausted."""

    def __init__(self, name: str, limit: int) -> None:
        super().__init__(f"{name} quota exhausted ({limit}/hour)")
        self.name = name
        self.limit = limit


class HourlyQuota:
    """Counter that resets one hour after the window opened."""

    def __init__(
        self,
        name: str,
        limit: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.limit = limit
        self._clock = clock
        self._count = 0
        self._window_start = clock()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Consume one unit or raise QuotaExceededError."""
        with self._lock:
            now = self._clock()
            if now - self._window_start > WINDOW_SECONDS:
                self._count = 0
                self._window_start = now
            if self._count >= self.limit:
                raise QuotaExceededError(self.name, self.limit)
            self._count += 1

    @property
    def remaining(self) -> int:
        with self._lock:
            if self._clock() - self._window_start > WINDOW_SECONDS:
                return self.limit
            return max(self.limit - self._count, 0)
