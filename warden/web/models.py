from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from warden.core.identity.models import BiometricModality, MFAMethod


class AuthorizationResponse(BaseModel):
    url: str
    state: str


class LoginResponse(BaseModel):
    user_id: str
    expires_at: float
    mfa_required: bool
    biometric_required: bool


class UserResponse(BaseModel):
    user_id: str
    email: str
    name: str
    roles: List[str]
    clearance: str
    department: str
    permissions: List[str]
    mfa_verified: bool
    biometric_verified: bool


class ChallengeRequest(BaseModel):
    method: MFAMethod


class ChallengeResponse(BaseModel):
    challenge_id: str
    method: MFAMethod
    expires_at: float
    max_attempts: int


class VerifyRequest(BaseModel):
    challenge_id: str = Field(min_length=1, max_length=128)
    code: str = Field(min_length=1, max_length=16)


class BiometricRegisterRequest(BaseModel):
    modality: BiometricModality
    template: str = Field(min_length=1, max_length=65536)
    device_id: str = Field(min_length=1, max_length=128)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class BiometricVerifyRequest(BaseModel):
    modality: BiometricModality
    template: str = Field(min_length=1, max_length=65536)
    device_id: str = Field(min_length=1, max_length=128)


class ComplianceRequest(BaseModel):
    action: str = Field(min_length=1, max_length=128)
    framework: str = Field(min_length=1, max_length=32)
    data: Dict[str, Any] = Field(default_factory=dict)


class OkResponse(BaseModel):
    ok: bool
    message: str = ""
