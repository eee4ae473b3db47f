"""
Notification rate limiting.

A token bucket sized from `notifications.max_per_minute`. The dispatcher runs on
the matching worker, so the limiter never waits: `try_acquire()` either takes a
token or reports that the burst budget is spent.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class TokenBucketRateLimiter:
    max_per_minute: float
    burst: float | None = None
    clock: Callable[[], float] = time.monotonic
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if float(self.max_per_minute) <= 0:
            raise ValueError("max_per_minute must be > 0")
        self.capacity = float(self.burst if self.burst is not None else self.max_per_minute)
        self.available = self.capacity
        self._per_second = float(self.max_per_minute) / 60.0
        self._updated_at = self.clock()

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take `tokens` if the bucket holds them right now."""
        if tokens <= 0:
            return True
        with self._lock:
            now = self.clock()
            gained = max(0.0, now - self._updated_at) * self._per_second
            self.available = min(self.capacity, self.available + gained)
            self._updated_at = now
            if self.available < tokens:
                return False
            self.available -= tokens
            return True
