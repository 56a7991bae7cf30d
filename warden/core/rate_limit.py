from __future__ import annotations

from typing import Any, Dict, Optional

from warden.core.errors import RateLimitError


class AttemptLimiter:
    """
    Failure-count limiter backed by the audit trail: the audit log already
    records every failed attempt, so the limiter only counts recent ones.
    """

    def __init__(self, *, audit: Any, max_failures: int = 5, window_seconds: float = 15 * 60):
        self.audit = audit
        self.max_failures = int(max_failures)
        self.window_seconds = float(window_seconds)

    def failures(self, action: str, *, user_id: Optional[str] = None, detail_match: Optional[Dict[str, Any]] = None) -> int:
        return self.audit.count_failures(window_seconds=self.window_seconds, action=action, user_id=user_id, detail_match=detail_match)

    def is_limited(self, action: str, *, user_id: Optional[str] = None, detail_match: Optional[Dict[str, Any]] = None) -> bool:
        return self.failures(action, user_id=user_id, detail_match=detail_match) >= self.max_failures

    def check(self, action: str, *, user_id: Optional[str] = None, detail_match: Optional[Dict[str, Any]] = None) -> None:
        if self.is_limited(action, user_id=user_id, detail_match=detail_match):
            self.audit.log(
                "rate_limited",
                action,
                "denied",
                user_id=user_id,
                details={"window_seconds": self.window_seconds, "max_failures": self.max_failures},
            )
            raise RateLimitError(action=action)
