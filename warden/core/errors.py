from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from warden.core.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class WardenError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


class ConfigError(WardenError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


# Never reveal whether the account exists or which step failed.
class AuthenticationError(WardenError):
    def __init__(self, user_message: str = "Authentication failed.", *, reason: str = "unknown", **ctx: Any):
        self.reason = reason
        super().__init__("authentication_failed", user_message, severity=Severity.WARN, recoverable=True, context={"reason": reason, **ctx})


class PermissionDeniedError(WardenError):
    def __init__(self, user_message: str = "Permission denied.", **ctx: Any):
        super().__init__("permission_denied", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class RateLimitError(WardenError):
    def __init__(self, user_message: str = "Too many attempts. Try again later.", **ctx: Any):
        super().__init__("rate_limited", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ValidationError(WardenError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


# Same message for tag mismatch and wrong key.
class EncryptionError(WardenError):
    def __init__(self, user_message: str = "Unable to process protected data.", **ctx: Any):
        super().__init__("encryption_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class BiometricMismatchError(WardenError):
    def __init__(self, user_message: str = "Biometric verification failed.", *, reason: str = "mismatch", **ctx: Any):
        self.reason = reason
        super().__init__("biometric_mismatch", user_message, severity=Severity.WARN, recoverable=True, context={"reason": reason, **ctx})


# ---- MFA sub-kinds ----
class MFAError(WardenError):
    reason: str = "mfa_failed"

    def __init__(self, user_message: str = "Verification failed.", *, remaining_attempts: Optional[int] = None, **ctx: Any):
        self.remaining_attempts = remaining_attempts
        super().__init__(f"mfa_{self.reason}", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class MFAChallengeNotFoundError(MFAError):
    reason = "not_found"

    def __init__(self, **ctx: Any):
        super().__init__("Verification request not found. Start a new one.", **ctx)


class MFAChallengeExpiredError(MFAError):
    reason = "expired"

    def __init__(self, **ctx: Any):
        super().__init__("Verification code expired. Start a new one.", **ctx)


class MFAAttemptsExhaustedError(MFAError):
    reason = "exhausted"

    def __init__(self, **ctx: Any):
        super().__init__("Too many incorrect codes. Start a new verification.", remaining_attempts=0, **ctx)


class MFACodeMismatchError(MFAError):
    reason = "invalid_code"

    def __init__(self, *, remaining_attempts: int, **ctx: Any):
        super().__init__(f"Incorrect code. {int(remaining_attempts)} attempt(s) remaining.", remaining_attempts=remaining_attempts, **ctx)


MFA_ERRORS_BY_REASON = {
    MFAChallengeNotFoundError.reason: MFAChallengeNotFoundError,
    MFAChallengeExpiredError.reason: MFAChallengeExpiredError,
    MFAAttemptsExhaustedError.reason: MFAAttemptsExhaustedError,
    MFACodeMismatchError.reason: MFACodeMismatchError,
}
