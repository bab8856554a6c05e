"""Sliding window rate limiting for the unauthenticated account endpoints."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Deque, Protocol


class RateLimiter(Protocol):
    """Anything that can admit or refuse one attempt for a key."""

    def allow(self, key: str) -> bool: ...


class SlidingWindowRateLimiter:
    """Thread-safe in-process limiter counting attempts per key over a rolling window.

    Keys whose newest attempt has left the window are dropped, at most once per
    window, so client-chosen keys cannot accumulate.
    """

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._attempts: defaultdict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep = time.monotonic()
        self._lock = Lock()

    def tracked_keys(self) -> int:
        """Number of keys currently holding attempt history."""
        with self._lock:
            return len(self._attempts)

    def allow(self, key: str) -> bool:
        """Record an attempt for ``key`` and return ``False`` once the window is full."""
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep > self._window:
                self._sweep(now)
            attempts = self._attempts[key]
            while attempts and now - attempts[0] > self._window:
                attempts.popleft()
            if len(attempts) >= self._max_requests:
                return False
            attempts.append(now)
            return True

    def reset(self, key: str) -> None:
        """Forget recorded attempts for ``key``."""
        with self._lock:
            self._attempts.pop(key, None)

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        stale = [key for key, attempts in self._attempts.items() if not attempts or now - attempts[-1] > self._window]
        for key in stale:
            del self._attempts[key]
        self._last_sweep = now
