from __future__ import annotations

import hashlib
import secrets
import time
from typing import Any, Callable, List, Optional

from pydantic import SecretStr

from warden.core.identity.models import AuthSession, AuthUser
from warden.core.logger import get_logger
from warden.core.store import InMemoryStore, KeyValueStore


def token_digest(token: str) -> str:
    return hashlib.sha256(str(token).encode("utf-8")).hexdigest()


class SessionManager:
    """
    Session lifecycle: create, validate, flag flips, invalidate.

    Expiry is absolute and fixed at creation; validation never extends it.
    Expired sessions are ended lazily the first time they are looked at.
    """

    def __init__(
        self,
        *,
        audit: Any,
        lifetime_seconds: int = 8 * 60 * 60,
        sessions: Optional[KeyValueStore[AuthSession]] = None,
        users: Optional[KeyValueStore[AuthUser]] = None,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.audit = audit
        self.lifetime_seconds = int(lifetime_seconds)
        self.sessions: KeyValueStore[AuthSession] = sessions if sessions is not None else InMemoryStore()
        self.users: KeyValueStore[AuthUser] = users if users is not None else InMemoryStore()
        self._by_token: KeyValueStore[str] = InMemoryStore()
        self.clock = clock
        self.logger = logger or get_logger()

    # ---- create ----
    def create_session(
        self,
        user: AuthUser,
        access_token: str,
        refresh_token: str = "",
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthSession:
        now = float(self.clock())
        digest = token_digest(access_token) if access_token else ""
        session = AuthSession(
            session_id=secrets.token_urlsafe(32),
            user_id=user.user_id,
            created_at=now,
            expires_at=now + self.lifetime_seconds,
            access_token=SecretStr(access_token or ""),
            refresh_token=SecretStr(refresh_token or ""),
            access_token_digest=digest,
            mfa_verified=not user.mfa_enabled,
            biometric_verified=not user.biometric_enabled,
            clearance=user.clearance,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.users.put(user.user_id, user)
        self.sessions.put(session.session_id, session)
        if digest:
            self._by_token.put(digest, session.session_id)
        self.audit.log(
            "session_created",
            "session",
            "success",
            user_id=user.user_id,
            session_id=session.session_id,
            ip_address=ip_address,
            details={"expires_at": session.expires_at, "mfa_required": user.mfa_enabled, "biometric_required": user.biometric_enabled},
        )
        return session

    # ---- lookups ----
    def get_session(self, session_id: str) -> Optional[AuthSession]:
        if not session_id:
            return None
        return self.sessions.get(str(session_id))

    def get_user(self, user_id: str) -> Optional[AuthUser]:
        return self.users.get(str(user_id))

    def validate_session(self, session_id: str, *, require_verified: bool = False) -> Optional[AuthUser]:
        session = self.get_session(session_id)
        if session is None or not session.is_active:
            return None
        if session.is_expired(float(self.clock())):
            self.invalidate_session(session.session_id, reason="expired")
            return None
        user = self.users.get(session.user_id)
        if user is None:
            self.invalidate_session(session.session_id, reason="user_missing")
            return None
        if require_verified and not session.is_verified:
            return None
        return user

    def resolve_bearer(self, token: str, *, require_verified: bool = False) -> Optional[AuthUser]:
        if not token:
            return None
        session_id = self._by_token.get(token_digest(token))
        if session_id is None:
            return None
        return self.validate_session(session_id, require_verified=require_verified)

    def session_for_bearer(self, token: str) -> Optional[AuthSession]:
        if not token:
            return None
        session_id = self._by_token.get(token_digest(token))
        return self.get_session(session_id) if session_id else None

    def is_verified(self, session_id: str) -> bool:
        session = self.get_session(session_id)
        return bool(session is not None and session.is_verified and not session.is_expired(float(self.clock())))

    def active_sessions(self, user_id: Optional[str] = None) -> List[AuthSession]:
        now = float(self.clock())
        out: List[AuthSession] = []
        for s in self.sessions.values():
            if not s.is_active or s.is_expired(now):
                continue
            if user_id is not None and s.user_id != user_id:
                continue
            out.append(s)
        return out

    # ---- flag flips ----
    def _flip(self, user_id: str, field: str) -> int:
        flipped = 0
        now = float(self.clock())
        for s in self.active_sessions(user_id):
            changed = []

            def _apply(cur: Optional[AuthSession]) -> Optional[AuthSession]:
                # re-check under the key lock: a concurrent logout wins
                if cur is None or not cur.is_active or cur.is_expired(now) or getattr(cur, field):
                    return cur
                changed.append(True)
                return cur.model_copy(update={field: True})

            self.sessions.update(s.session_id, _apply)
            flipped += len(changed)
        return flipped

    def mark_mfa_verified(self, user_id: str) -> int:
        return self._flip(user_id, "mfa_verified")

    def mark_biometric_verified(self, user_id: str) -> int:
        return self._flip(user_id, "biometric_verified")

    # ---- end ----
    def invalidate_session(self, session_id: str, reason: str = "logout") -> bool:
        """End a session. Idempotent: only the call that ends it returns True and audits."""
        ended: List[AuthSession] = []
        now = float(self.clock())

        def _end(cur: Optional[AuthSession]) -> Optional[AuthSession]:
            if cur is None or not cur.is_active:
                return cur
            new = cur.model_copy(update={"is_active": False, "ended_at": now, "end_reason": reason})
            ended.append(new)
            return new

        if not session_id:
            return False
        self.sessions.update(str(session_id), _end)
        if not ended:
            return False
        session = ended[0]
        if session.access_token_digest:
            self._by_token.delete(session.access_token_digest)
        self.audit.log(
            "session_invalidated",
            "session",
            "success",
            user_id=session.user_id,
            session_id=session.session_id,
            details={"reason": reason},
        )
        return True

    def invalidate_user_sessions(self, user_id: str, reason: str = "revoked") -> int:
        return sum(1 for s in self.active_sessions(user_id) if self.invalidate_session(s.session_id, reason=reason))
