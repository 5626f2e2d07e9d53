"""
Rate limiting toward the exchange.

Limiters delay calls to keep a minimum spacing; they never drop a call.
"""

import threading
import time
from typing import Callable, Optional, Protocol


class RateLimiter(Protocol):
    """Protocol consulted before each network call."""
    def wait(self) -> None: ...


class NoopRateLimiter:
    def wait(self) -> None:
        return None


class FixedRateLimiter:
    """
    Enforces a minimum interval between consecutive calls.

    Usage:
        limiter = FixedRateLimiter(min_interval_ms=200)
        limiter.wait()
        requests.post(...)
    """

    def __init__(
        self,
        min_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval_ms < 0:
            raise ValueError("min_interval_ms must be >= 0")
        self.min_interval = min_interval_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> None:
        if self.min_interval == 0:
            return
        with self._lock:
            if self._last is not None:
                elapsed = self._clock() - self._last
                if elapsed < self.min_interval:
                    self._sleep(self.min_interval - elapsed)
            self._last = self._clock()
