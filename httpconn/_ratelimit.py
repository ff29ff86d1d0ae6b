from __future__ import annotations

import logging
import math
import threading
import time

logger = logging.getLogger("httpconn.ratelimit")


class RateLimiter:
    """
    Spaces out requests. The base class does not limit anything.
    """

    @property
    def rate(self) -> float:
        """Permits per second."""
        return math.inf

    def acquire(self) -> None:
        """Block until the next request may be sent."""

    @staticmethod
    def unlimited() -> RateLimiter:
        return RateLimiter()


class SimpleRateLimiter(RateLimiter):
    """
    Allows one acquisition per ``1 / rate`` seconds, sleeping the calling
    thread for whatever is left of the interval since the previous
    acquisition. Requests are not queued fairly, so it suits a handful of
    threads rather than heavy contention.
    """

    def __init__(self, rate: float) -> None:
        self._rate = rate
        self._interval = 1.0 / rate
        self._lock = threading.Lock()
        self._last_acquired: float | None = None

    @classmethod
    def create(cls, rate: float) -> SimpleRateLimiter:
        if math.isnan(rate):
            raise ValueError("rate is NaN")
        if rate <= 0.0:
            raise ValueError(f"rate must be positive, got {rate}")
        return cls(rate)

    @property
    def rate(self) -> float:
        return self._rate

    def acquire(self) -> None:
        with self._lock:
            now = time.monotonic()
            if self._last_acquired is not None:
                wait = self._interval - (now - self._last_acquired)
                if wait > 0:
                    logger.debug("Rate limited, waiting %.3f seconds", wait)
                    time.sleep(wait)
                    now = time.monotonic()
            self._last_acquired = now

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(rate={self._rate})"
