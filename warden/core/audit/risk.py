from __future__ import annotations

from typing import Dict, Union

from warden.core.audit.models import AuditOutcome

MIN_RISK = 0
MAX_RISK = 10
DEFAULT_ACTION_SCORE = 1

ACTION_BASE_SCORES: Dict[str, int] = {
    "login": 2,
    "data_access": 3,
    "data_modification": 5,
    "encryption": 1,
    "data_encryption": 1,
    "decryption": 3,
    "data_decryption": 3,
    "admin_action": 7,
    "security_violation": 9,
    "authentication_failure": 6,
}

OUTCOME_MODIFIERS: Dict[AuditOutcome, int] = {
    AuditOutcome.success: 0,
    AuditOutcome.failure: 3,
    AuditOutcome.denied: 5,
}

PROTECTED_DATA_MARKERS = ("phi", "pii", "patient", "personal", "medical")
PRIVILEGED_SCOPE_MARKERS = ("admin", "security")


def risk_score(action: str, resource: str, outcome: Union[AuditOutcome, str]) -> int:
    """Base score by action plus outcome and resource modifiers, clamped to [0, 10]."""
    score = ACTION_BASE_SCORES.get(str(action), DEFAULT_ACTION_SCORE)
    try:
        score += OUTCOME_MODIFIERS.get(AuditOutcome(outcome), 0)
    except ValueError:
        pass
    res = str(resource or "").lower()
    if any(m in res for m in PROTECTED_DATA_MARKERS):
        score += 4
    if any(m in res for m in PRIVILEGED_SCOPE_MARKERS):
        score += 3
    return int(max(MIN_RISK, min(MAX_RISK, score)))
