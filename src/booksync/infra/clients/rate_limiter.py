from __future__ import annotations

from collections.abc import Callable
import threading
import time


class RateLimiter:
    """Enforces a minimum interval between requests across threads.

    Zoho allows roughly one request per second per organization, so a single
    limiter instance is shared by every call a client makes.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed: float | None = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def acquire(self) -> float:
        """Block until the next request may be sent.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            now = self._clock()
            waited = 0.0
            if self._next_allowed is not None and now < self._next_allowed:
                waited = self._next_allowed - now
                self._sleep(waited)
                now = self._next_allowed
            self._next_allowed = now + self._min_interval
            return waited
