from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


KNOWN_FRAMEWORKS = {"HIPAA", "SOC2", "CMMC", "GDPR"}


class EncryptionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # the only cipher the encryption service speaks; anything else is a config error
    algorithm: Literal["AES-256-GCM"] = "AES-256-GCM"
    master_key_hex: Optional[SecretStr] = None
    master_key_path: Optional[str] = None
    scrypt_n: int = Field(default=2**14, ge=2**10)
    scrypt_r: int = Field(default=8, ge=1)
    scrypt_p: int = Field(default=1, ge=1)


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    retention_days: int = Field(default=90, ge=1, le=3650)
    path_jsonl: Optional[str] = None
    high_risk_threshold: int = Field(default=7, ge=0, le=10)


class ComplianceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    frameworks: List[str] = Field(default_factory=lambda: ["HIPAA", "SOC2", "CMMC"])

    @field_validator("frameworks")
    @classmethod
    def _known(cls, v: List[str]) -> List[str]:
        out = [str(f).upper() for f in v]
        unknown = sorted(set(out) - KNOWN_FRAMEWORKS)
        if unknown:
            raise ValueError(f"Unknown compliance frameworks: {unknown}")
        return out


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    lifetime_seconds: int = Field(default=8 * 60 * 60, ge=60)
    cookie_name: str = "warden_session"
    cookie_secure: bool = True


class MFAConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    challenge_ttl_seconds: int = Field(default=5 * 60, ge=30, le=3600)
    max_attempts: int = Field(default=3, ge=1, le=10)
    code_digits: int = Field(default=6, ge=6, le=10)
    totp_valid_window: int = Field(default=1, ge=0, le=4)
    dispatch_workers: int = Field(default=4, ge=1, le=64)
    dispatch_queue_size: int = Field(default=100, ge=1)
    dispatch_retries: int = Field(default=3, ge=1, le=10)
    dispatch_backoff_seconds: float = Field(default=0.5, ge=0.0)
    dispatch_timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_failures_per_window: int = Field(default=5, ge=1)
    failure_window_seconds: int = Field(default=15 * 60, ge=1)
    delivery: Literal["log", "webhook"] = "log"
    webhook_url: Optional[str] = None
    webhook_token: Optional[SecretStr] = None

    @model_validator(mode="after")
    def _webhook_needs_https_url(self) -> "MFAConfig":
        if self.delivery == "webhook" and not (self.webhook_url or "").startswith("https://"):
            raise ValueError("mfa.delivery=webhook requires an https:// webhook_url.")
        return self


class BiometricConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    default_confidence: float = Field(default=0.95, ge=0.0, le=1.0)


class OAuthConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    client_id: str = "warden"
    client_secret: SecretStr = SecretStr("")
    redirect_uri: str = "https://localhost/auth/callback"
    scope: str = "openid profile email roles clearance"
    authorization_endpoint: str = "https://auth.example.com/oauth/authorize"
    token_endpoint: str = "https://auth.example.com/oauth/token"
    userinfo_endpoint: str = "https://auth.example.com/oauth/userinfo"
    timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    state_ttl_seconds: int = Field(default=600, ge=30)
    breaker_failures: int = Field(default=5, ge=1)
    breaker_window_seconds: int = Field(default=60, ge=1)
    breaker_cooldown_seconds: int = Field(default=30, ge=1)


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    bind_host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=list)
    per_ip_per_minute: int = Field(default=60, ge=1)
    analyze_requests: bool = True

    @field_validator("allowed_origins")
    @classmethod
    def _no_wildcard(cls, v: List[str]) -> List[str]:
        if any(o == "*" for o in v):
            raise ValueError("Wildcard CORS origins are not allowed.")
        return v


class WardenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    log_dir: Optional[str] = "logs"
    log_level: str = "INFO"
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    mfa: MFAConfig = Field(default_factory=MFAConfig)
    biometric: BiometricConfig = Field(default_factory=BiometricConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    web: WebConfig = Field(default_factory=WebConfig)
