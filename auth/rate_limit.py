"""
Sliding-window rate limiter.

Keeps the timestamps of accepted requests per key (identity, or client IP
for anonymous callers) and evicts the ones that fell out of the window on
every check.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int     # seconds until a slot frees up; 0 when allowed
    reset_after: float   # seconds until the whole window is clear


class SlidingWindowRateLimiter:
    """At most ``capacity`` accepted requests per key in any ``window_seconds`` span."""

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window must be positive")
        self.capacity = capacity
        self.window = window_seconds
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _evict(self, timestamps: Deque[float], now: float) -> None:
        horizon = now - self.window
        while timestamps and timestamps[0] <= horizon:
            timestamps.popleft()

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` if there is room, else reject it."""
        with self._lock:
            now = self._clock()
            timestamps = self._windows.setdefault(key, deque())
            self._evict(timestamps, now)

            if len(timestamps) >= self.capacity:
                retry_after = max(1, math.ceil(timestamps[0] + self.window - now))
                logger.warning(
                    "Rate limit exceeded key=%s limit=%d window=%.0fs",
                    key,
                    self.capacity,
                    self.window,
                )
                return RateLimitDecision(
                    allowed=False,
                    limit=self.capacity,
                    remaining=0,
                    retry_after=retry_after,
                    reset_after=timestamps[-1] + self.window - now,
                )

            timestamps.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.capacity,
                remaining=self.capacity - len(timestamps),
                retry_after=0,
                reset_after=timestamps[0] + self.window - now,
            )

    def peek(self, key: str) -> RateLimitDecision:
        """Report the quota for ``key`` without consuming any."""
        with self._lock:
            now = self._clock()
            timestamps = self._windows.get(key, deque())
            self._evict(timestamps, now)
            used = len(timestamps)
            full = used >= self.capacity
            return RateLimitDecision(
                allowed=not full,
                limit=self.capacity,
                remaining=max(0, self.capacity - used),
                retry_after=max(1, math.ceil(timestamps[0] + self.window - now)) if full else 0,
                reset_after=(timestamps[-1] + self.window - now) if timestamps else 0.0,
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def prune(self) -> int:
        """Forget keys whose window has emptied.  Returns how many were dropped."""
        with self._lock:
            now = self._clock()
            idle = []
            for key, timestamps in self._windows.items():
                self._evict(timestamps, now)
                if not timestamps:
                    idle.append(key)
            for key in idle:
                del self._windows[key]
            return len(idle)
