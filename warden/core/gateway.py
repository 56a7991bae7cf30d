from __future__ import annotations

import secrets
import time
from typing import Any, Callable, List, Optional, Tuple
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, ValidationError

from warden.core.config.models import OAuthConfig
from warden.core.errors import AuthenticationError
from warden.core.identity.models import AuthSession, AuthUser
from warden.core.logger import get_logger
from warden.core.oauth import IdentityProviderError, IdentityProviderTimeout, TokenResponse, UserInfoClaims
from warden.core.permissions import ClearanceLevel, calculate_permissions, parse_clearance
from warden.core.store import InMemoryStore, KeyValueStore


class AuthorizationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str
    state: str


class LoginResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    user: AuthUser
    session: AuthSession


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = str(authorization).strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class _LoginFailed(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthenticationGateway:
    """
    OAuth2 authorization-code login and inbound request authentication.

    Every callback ends with exactly one `oauth_login` audit entry. Failures
    surface as AuthenticationError with the generic message; the specific
    reason goes to the audit trail only.
    """

    def __init__(
        self,
        *,
        cfg: OAuthConfig,
        idp: Any,
        sessions: Any,
        audit: Any,
        breaker: Any = None,
        states: Optional[KeyValueStore[float]] = None,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.cfg = cfg
        self.idp = idp
        self.sessions = sessions
        self.audit = audit
        self.breaker = breaker
        self.states: KeyValueStore[float] = states if states is not None else InMemoryStore()
        self.clock = clock
        self.logger = logger or get_logger()

    # ---- login ----
    def authorization_url(self, state: Optional[str] = None) -> AuthorizationRequest:
        state = state or secrets.token_hex(32)
        now = float(self.clock())
        self._prune_states(now)
        self.states.put(state, now + self.cfg.state_ttl_seconds)
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.cfg.client_id,
                "redirect_uri": self.cfg.redirect_uri,
                "scope": self.cfg.scope,
                "state": state,
            }
        )
        sep = "&" if "?" in self.cfg.authorization_endpoint else "?"
        return AuthorizationRequest(url=f"{self.cfg.authorization_endpoint}{sep}{query}", state=state)

    def _consume_state(self, state: Optional[str]) -> bool:
        if not state:
            return False
        taken: List[float] = []

        def _take(cur: Optional[float]) -> Optional[float]:
            if cur is not None:
                taken.append(cur)
            return None

        self.states.update(str(state), _take)
        return bool(taken) and float(self.clock()) < taken[0]

    def _prune_states(self, now: float) -> None:
        for key, expires_at in self.states.items():
            if expires_at <= now:
                self.states.delete(key)

    def _exchange(self, code: str) -> Tuple[TokenResponse, UserInfoClaims]:
        """
        Token exchange plus userinfo as one guarded round trip: the breaker
        sees a single outcome per login. Claims that fail validation count as
        an upstream fault, the same as a 5xx.
        """
        if self.breaker is not None and not self.breaker.allow():
            raise _LoginFailed("idp_unavailable")
        try:
            tokens = self.idp.exchange_code(code)
            claims = UserInfoClaims.model_validate(self.idp.fetch_userinfo(tokens.access_token))
        except IdentityProviderTimeout:
            self._record(False)
            raise _LoginFailed("idp_timeout")
        except IdentityProviderError as e:
            # a 4xx is our request's fault, the provider itself is healthy
            self._record(not e.upstream_fault)
            raise _LoginFailed(e.category)
        except ValidationError:
            self._record(False)
            raise _LoginFailed("invalid_claims")
        except Exception as e:  # noqa: BLE001
            self._record(False)
            self.logger.error(f"Identity provider call failed unexpectedly: {e.__class__.__name__}")
            raise _LoginFailed("idp_error") from e
        self._record(True)
        return tokens, claims

    def _record(self, healthy: bool) -> None:
        if self.breaker is None:
            return
        if healthy:
            self.breaker.record_success()
        else:
            self.breaker.record_failure()

    def _build_user(self, claims: UserInfoClaims) -> AuthUser:
        clearance = parse_clearance(claims.clearance, ClearanceLevel.PUBLIC)
        return AuthUser(
            user_id=claims.sub,
            email=claims.email,
            name=claims.name,
            roles=frozenset(claims.roles),
            clearance=clearance,
            department=claims.department,
            permissions=calculate_permissions(claims.roles, clearance),
            mfa_enabled=claims.mfa_enabled,
            biometric_enabled=claims.biometric_enabled,
            last_login=float(self.clock()),
        )

    def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        try:
            if not self._consume_state(state):
                raise _LoginFailed("invalid_state")
            if not code:
                raise _LoginFailed("missing_code")
            tokens, claims = self._exchange(code)
        except _LoginFailed as e:
            self.logger.warning(f"OAuth login failed: {e.reason}")
            self.audit.log("oauth_login", "authentication", "failure", ip_address=ip_address, details={"reason": e.reason})
            raise AuthenticationError(reason=e.reason) from None

        user = self._build_user(claims)
        session = self.sessions.create_session(user, tokens.access_token, tokens.refresh_token, ip_address=ip_address, user_agent=user_agent)
        self.audit.log(
            "oauth_login",
            "authentication",
            "success",
            user_id=user.user_id,
            session_id=session.session_id,
            ip_address=ip_address,
            details={"roles": sorted(user.roles), "clearance": user.clearance.value, "mfa_required": user.mfa_enabled, "biometric_required": user.biometric_enabled},
        )
        return LoginResult(user=user, session=session)

    # ---- inbound requests ----
    def authenticate_request(
        self,
        authorization: Optional[str] = None,
        session_cookie: Optional[str] = None,
        *,
        require_verified: bool = False,
    ) -> Optional[AuthUser]:
        token = bearer_token(authorization)
        if token:
            return self.sessions.resolve_bearer(token, require_verified=require_verified)
        if session_cookie:
            return self.sessions.validate_session(session_cookie, require_verified=require_verified)
        return None

    def session_for_request(self, authorization: Optional[str] = None, session_cookie: Optional[str] = None) -> Optional[AuthSession]:
        token = bearer_token(authorization)
        if token:
            return self.sessions.session_for_bearer(token)
        if session_cookie:
            return self.sessions.get_session(session_cookie)
        return None

    def logout(self, session_id: str) -> bool:
        return self.sessions.invalidate_session(session_id, reason="logout")
