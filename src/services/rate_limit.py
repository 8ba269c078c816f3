"""In-memory sliding-window rate limiter keyed by client identifier.

Each key keeps a deque of request timestamps inside the current window.
Keys with no request inside the window are swept once per window, so
client-supplied keys cannot accumulate.  State is per-process and lost
on restart.
"""

from __future__ import annotations

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

# Proxy headers checked in order when identifying the client
CLIENT_KEY_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip", "x-client-ip")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each key."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic) -> None:
        self.max_requests = max(1, max_requests)
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str) -> RateLimitDecision:
        """Record a request for *key* unless it is over the limit."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            events = self._events[key]
            while events and now - events[0] >= self.window_seconds:
                events.popleft()

            allowed = len(events) < self.max_requests
            if allowed:
                events.append(now)

            reset = self.window_seconds - (now - events[0]) if events else self.window_seconds
            return RateLimitDecision(
                allowed=allowed,
                limit=self.max_requests,
                remaining=max(0, self.max_requests - len(events)),
                reset_seconds=max(0, math.ceil(reset)),
            )

    def _sweep(self, now: float) -> None:
        """Forget keys whose newest request has left the window."""
        stale = [
            key for key, events in self._events.items()
            if not events or now - events[-1] >= self.window_seconds
        ]
        for key in stale:
            del self._events[key]
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


def client_key(headers) -> str:
    """Pick the rate-limit key from proxy headers, falling back to ``"unknown"``."""
    for name in CLIENT_KEY_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return "unknown"
