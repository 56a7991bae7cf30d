from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class TokenBucket:
    tokens: float
    last_refill: float


class RateLimiter:
    """
    Per-key token bucket: `per_minute` requests of burst, refilled evenly over
    a minute. Idle buckets are dropped once they would be full again.
    """

    def __init__(self, *, per_minute: int = 60, clock: Callable[[], float] = time.time) -> None:
        self.capacity = float(max(1, int(per_minute)))
        self.clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, TokenBucket] = {}
        self._last_prune = float(clock())

    def _refill_locked(self, key: str, now: float) -> TokenBucket:
        b = self._buckets.get(key)
        if b is None:
            b = TokenBucket(tokens=self.capacity, last_refill=now)
            self._buckets[key] = b
            return b
        b.tokens = min(self.capacity, b.tokens + max(0.0, now - b.last_refill) * self.capacity / 60.0)
        b.last_refill = now
        return b

    def allow(self, key: str) -> bool:
        now = float(self.clock())
        with self._lock:
            b = self._refill_locked(key, now)
            if b.tokens < 1.0:
                return False
            b.tokens -= 1.0
            return True

    def retry_after_seconds(self, key: str) -> int:
        now = float(self.clock())
        with self._lock:
            b = self._refill_locked(key, now)
            missing = max(0.0, 1.0 - b.tokens)
        return int(math.ceil(missing * 60.0 / self.capacity))

    def prune(self) -> int:
        now = float(self.clock())
        idle = 60.0
        with self._lock:
            stale = [k for k, b in self._buckets.items() if now - b.last_refill >= idle]
            for k in stale:
                del self._buckets[k]
        return len(stale)

    def maybe_prune(self) -> int:
        """Prune at most once per idle period; cheap enough to call on every request."""
        now = float(self.clock())
        with self._lock:
            if now - self._last_prune < 60.0:
                return 0
            self._last_prune = now
        return self.prune()
