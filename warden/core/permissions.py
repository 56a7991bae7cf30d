"""
Role- and clearance-derived permissions.

Permissions are a pure function of (roles, clearance). Clearance is a total
order; each level grants its own capability and every level at or below the
held level is granted too, so clearance permissions are monotonic in rank.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union


ADMIN_WILDCARD = "admin:*"
BASE_PERMISSIONS: FrozenSet[str] = frozenset({"read:profile", "update:profile"})


class ClearanceLevel(str, Enum):
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    SECRET = "SECRET"
    TOP_SECRET = "TOP_SECRET"


_CLEARANCE_ORDER = [
    ClearanceLevel.PUBLIC,
    ClearanceLevel.INTERNAL,
    ClearanceLevel.CONFIDENTIAL,
    ClearanceLevel.SECRET,
    ClearanceLevel.TOP_SECRET,
]


ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({ADMIN_WILDCARD}),
    "healthcare_provider": frozenset({"read:patient_data", "write:patient_data", "access:medical_ai"}),
    "defense_analyst": frozenset({"read:classified_data", "access:defense_ai", "analyze:threat_data"}),
    "legal_counsel": frozenset({"read:legal_documents", "access:legal_ai", "draft:contracts"}),
    "researcher": frozenset({"access:research_data", "run:simulations", "access:spectra"}),
}

CLEARANCE_PERMISSIONS: Dict[ClearanceLevel, FrozenSet[str]] = {
    ClearanceLevel.PUBLIC: frozenset(),
    ClearanceLevel.INTERNAL: frozenset({"access:internal"}),
    ClearanceLevel.CONFIDENTIAL: frozenset({"access:confidential"}),
    ClearanceLevel.SECRET: frozenset({"access:secret"}),
    ClearanceLevel.TOP_SECRET: frozenset({"access:top_secret"}),
}


def parse_clearance(value: Union[str, ClearanceLevel, None], default: Optional[ClearanceLevel] = None) -> Optional[ClearanceLevel]:
    if isinstance(value, ClearanceLevel):
        return value
    if value is None:
        return default
    try:
        return ClearanceLevel(str(value).strip().upper())
    except ValueError:
        return default


def clearance_rank(level: Union[str, ClearanceLevel]) -> int:
    """Position in PUBLIC < INTERNAL < CONFIDENTIAL < SECRET < TOP_SECRET; -1 if unknown."""
    parsed = parse_clearance(level)
    if parsed is None:
        return -1
    return _CLEARANCE_ORDER.index(parsed)


def calculate_permissions(roles: Iterable[str], clearance: Union[str, ClearanceLevel, None]) -> FrozenSet[str]:
    perms = set(BASE_PERMISSIONS)
    for role in roles or ():
        perms |= ROLE_PERMISSIONS.get(str(role), frozenset())
    # unknown clearance grants nothing beyond PUBLIC
    held = max(0, clearance_rank(clearance) if clearance is not None else 0)
    for level in _CLEARANCE_ORDER[: held + 1]:
        perms |= CLEARANCE_PERMISSIONS[level]
    return frozenset(perms)


def has_permission(user: Any, permission: str) -> bool:
    perms = getattr(user, "permissions", None) or frozenset()
    return permission in perms or ADMIN_WILDCARD in perms


def has_clearance(user: Any, required: Union[str, ClearanceLevel]) -> bool:
    required_rank = clearance_rank(required)
    if required_rank < 0:
        return False
    return clearance_rank(getattr(user, "clearance", ClearanceLevel.PUBLIC)) >= required_rank
