"""Thread-safe token bucket shared by every request a transport makes."""

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    def __init__(
        self,
        requests_per_second: float,
        burst: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.rate = requests_per_second
        self.capacity = burst if burst is not None else max(1.0, requests_per_second)
        self.tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """Block until a token is available. Returns the seconds spent waiting."""
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                self.tokens = min(
                    self.capacity, self.tokens + (now - self._last_refill) * self.rate
                )
                self._last_refill = now
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return waited
                delay = (1.0 - self.tokens) / self.rate
            self._sleep(delay)
            waited += delay
