"""
Identity data: users, sessions, MFA challenges and biometric records.

All models are frozen; state changes go through `KeyValueStore.update` with
copy-on-write (`model_copy(update=...)`).
"""

from warden.core.identity.models import (
    AuthSession,
    AuthUser,
    BiometricModality,
    BiometricRecord,
    MFAChallenge,
    MFAMethod,
)

__all__ = [
    "AuthSession",
    "AuthUser",
    "BiometricModality",
    "BiometricRecord",
    "MFAChallenge",
    "MFAMethod",
]
