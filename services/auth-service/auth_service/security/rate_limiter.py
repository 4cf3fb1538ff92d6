"""In-memory sliding window limiter for the public credential endpoints."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, DefaultDict


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter keyed by client address."""

    def __init__(self, max_requests: int, window_seconds: int, max_keys: int = 10_000) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._max_keys = max_keys
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def hit(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` unless the window is already full."""
        now = time.time()
        with self._lock:
            if key not in self._events and len(self._events) >= self._max_keys:
                self._sweep(now)
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                retry_after = max(1, math.ceil(self._window - (now - queue[0])))
                return RateLimitDecision(False, retry_after)
            queue.append(now)
            return RateLimitDecision(True)

    def reset(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._events)

    def _sweep(self, now: float) -> None:
        """Drop keys whose newest request has left the window."""
        stale = [key for key, queue in self._events.items() if not queue or now - queue[-1] > self._window]
        for key in stale:
            del self._events[key]
