from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class BreakerConfig:
    failures: int
    window_seconds: int
    cooldown_seconds: int


class CircuitBreaker:
    """
    Shields the identity provider from login storms while it is failing.

    Opens after `failures` upstream failures inside `window_seconds`. Once
    `cooldown_seconds` have passed a single trial call is let through; its
    outcome closes or re-opens the circuit.
    """

    def __init__(self, cfg: BreakerConfig, *, name: str = "idp", clock: Callable[[], float] = time.time, logger: Any = None):
        self.cfg = cfg
        self.name = name
        self.clock = clock
        self.logger = logger
        self._lock = threading.Lock()
        self._failures: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._trial_out = False

    def _state_locked(self, now: float) -> BreakerState:
        if self._opened_at is None:
            return BreakerState.CLOSED
        if now - self._opened_at < float(self.cfg.cooldown_seconds):
            return BreakerState.OPEN
        return BreakerState.HALF_OPEN

    def _trim_locked(self, now: float) -> None:
        cutoff = now - float(self.cfg.window_seconds)
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    def _announce(self, old: BreakerState, new: BreakerState) -> None:
        if old != new and self.logger is not None:
            self.logger.warning(f"Circuit breaker {self.name}: {old.value} -> {new.value}")

    def state(self) -> BreakerState:
        with self._lock:
            return self._state_locked(float(self.clock()))

    def allow(self) -> bool:
        with self._lock:
            st = self._state_locked(float(self.clock()))
            if st == BreakerState.CLOSED:
                return True
            if st == BreakerState.HALF_OPEN and not self._trial_out:
                self._trial_out = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            old = self._state_locked(float(self.clock()))
            self._failures.clear()
            self._opened_at = None
            self._trial_out = False
        self._announce(old, BreakerState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            now = float(self.clock())
            old = self._state_locked(now)
            self._failures.append(now)
            self._trim_locked(now)
            if old == BreakerState.HALF_OPEN or len(self._failures) >= int(self.cfg.failures):
                self._opened_at = now
                self._trial_out = False
            new = self._state_locked(now)
        self._announce(old, new)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            now = float(self.clock())
            self._trim_locked(now)
            return {
                "name": self.name,
                "state": self._state_locked(now).value,
                "recent_failures": len(self._failures),
                "retry_at": (self._opened_at + float(self.cfg.cooldown_seconds)) if self._opened_at is not None else None,
            }
