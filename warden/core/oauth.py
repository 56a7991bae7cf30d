from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from warden.core.config.models import OAuthConfig


class IdentityProviderError(Exception):
    """Identity provider call failed. `category` is safe to log; it never carries tokens."""

    def __init__(self, category: str, *, status: Optional[int] = None):
        super().__init__(category)
        self.category = category
        self.status = status

    @property
    def upstream_fault(self) -> bool:
        # 4xx means the request (usually the code) was bad, not the provider
        return not (self.status is not None and 400 <= self.status < 500)


class IdentityProviderTimeout(IdentityProviderError):
    def __init__(self, category: str = "idp_timeout"):
        super().__init__(category)


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    refresh_token: str = ""
    token_type: str = "Bearer"
    expires_in: Optional[int] = None


class UserInfoClaims(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sub: str = Field(min_length=1)
    email: str = Field(min_length=3)
    name: str = ""
    roles: List[str] = Field(default_factory=lambda: ["user"])
    clearance: str = "INTERNAL"
    department: str = "RESEARCH"
    mfa_enabled: bool = False
    biometric_enabled: bool = False

    @field_validator("roles", mode="before")
    @classmethod
    def _roles(cls, v: Any) -> Any:
        if v is None:
            return ["user"]
        if isinstance(v, str):
            return [r for r in v.replace(",", " ").split() if r]
        return v

    @field_validator("name", "clearance", "department", "mfa_enabled", "biometric_enabled", mode="before")
    @classmethod
    def _null_is_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("clearance", "department", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return str(v).strip().upper() if v is not None else v


class IdentityProviderClient:
    """OAuth2 authorization-code exchange and userinfo lookup over `requests`."""

    def __init__(self, cfg: OAuthConfig, *, http: Optional[requests.Session] = None):
        self.cfg = cfg
        self.http = http or requests.Session()

    def _json(self, r: requests.Response, category: str) -> Dict[str, Any]:
        if not (200 <= r.status_code < 300):
            raise IdentityProviderError(category, status=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise IdentityProviderError(f"{category}_invalid_json", status=r.status_code) from e
        if not isinstance(data, dict):
            raise IdentityProviderError(f"{category}_invalid_json", status=r.status_code)
        return data

    def exchange_code(self, code: str) -> TokenResponse:
        try:
            r = self.http.post(
                self.cfg.token_endpoint,
                data={"grant_type": "authorization_code", "code": code, "redirect_uri": self.cfg.redirect_uri},
                auth=(self.cfg.client_id, self.cfg.client_secret.get_secret_value()),
                headers={"Accept": "application/json"},
                timeout=self.cfg.timeout_seconds,
            )
        except requests.Timeout as e:
            raise IdentityProviderTimeout() from e
        except requests.RequestException as e:
            raise IdentityProviderError("token_exchange_unreachable") from e
        data = self._json(r, "token_exchange_failed")
        try:
            return TokenResponse.model_validate(data)
        except ValueError as e:
            raise IdentityProviderError("token_response_invalid") from e

    def fetch_userinfo(self, access_token: str) -> Dict[str, Any]:
        try:
            r = self.http.get(
                self.cfg.userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self.cfg.timeout_seconds,
            )
        except requests.Timeout as e:
            raise IdentityProviderTimeout() from e
        except requests.RequestException as e:
            raise IdentityProviderError("userinfo_unreachable") from e
        return self._json(r, "userinfo_failed")
