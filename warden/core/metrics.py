from __future__ import annotations

import time
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict


class SecurityMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    active_sessions: int
    known_users: int
    mfa_adoption_pct: float
    biometric_adoption_pct: float
    average_session_seconds: float
    security_incidents_24h: int
    idp_circuit: Optional[str] = None


def _pct(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 2) if whole else 0.0


def security_metrics(
    *,
    sessions: Any,
    audit: Any,
    biometric: Optional[Any] = None,
    breaker: Optional[Any] = None,
    clock: Callable[[], float] = time.time,
) -> SecurityMetrics:
    now = float(clock())
    active = sessions.active_sessions()
    users = sessions.users.values()
    enrolled = set(biometric.enrolled_users()) if biometric is not None else set()
    incidents = [e for e in audit.entries(since=now - 24 * 60 * 60) if e.risk_score >= audit.high_risk_threshold]
    return SecurityMetrics(
        active_sessions=len(active),
        known_users=len(users),
        mfa_adoption_pct=_pct(sum(1 for u in users if u.mfa_enabled), len(users)),
        biometric_adoption_pct=_pct(sum(1 for u in users if u.user_id in enrolled or u.biometric_enabled), len(users)),
        average_session_seconds=(sum(now - s.created_at for s in active) / len(active)) if active else 0.0,
        security_incidents_24h=len(incidents),
        idp_circuit=breaker.state().value if breaker is not None else None,
    )
