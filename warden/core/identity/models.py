from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from warden.core.crypto import EncryptedPayload
from warden.core.permissions import ClearanceLevel


class AuthUser(BaseModel):
    """Immutable per-login snapshot of an authenticated principal."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: str
    email: str = ""
    name: str = ""
    roles: FrozenSet[str] = Field(default_factory=frozenset)
    clearance: ClearanceLevel = ClearanceLevel.INTERNAL
    department: str = "RESEARCH"
    permissions: FrozenSet[str] = Field(default_factory=frozenset)
    mfa_enabled: bool = False
    biometric_enabled: bool = False
    last_login: float = Field(default_factory=time.time)


class AuthSession(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    session_id: str
    user_id: str
    created_at: float
    expires_at: float
    access_token: SecretStr = SecretStr("")
    refresh_token: SecretStr = SecretStr("")
    access_token_digest: str = ""
    mfa_verified: bool = False
    biometric_verified: bool = False
    clearance: ClearanceLevel = ClearanceLevel.INTERNAL
    is_active: bool = True
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    ended_at: Optional[float] = None
    end_reason: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return bool(self.is_active and self.mfa_verified and self.biometric_verified)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MFAMethod(str, Enum):
    totp = "totp"
    sms = "sms"
    email = "email"
    push = "push"

    @property
    def out_of_band(self) -> bool:
        return self is not MFAMethod.totp


class MFAChallenge(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    challenge_id: str = Field(default_factory=lambda: uuid.uuid4().hex + uuid.uuid4().hex)
    user_id: str
    method: MFAMethod
    created_at: float
    expires_at: float
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    # out-of-band only: salted digest of the issued code
    code_salt: Optional[str] = None
    code_digest: Optional[str] = None

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class BiometricModality(str, Enum):
    fingerprint = "fingerprint"
    face = "face"
    voice = "voice"
    retina = "retina"


class BiometricRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    record_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    modality: BiometricModality
    template: EncryptedPayload
    confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    device_id: str
    registered_at: float
