from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from warden.core.errors import MFA_ERRORS_BY_REASON, MFACodeMismatchError
from warden.core.identity.models import MFAChallenge, MFAMethod
from warden.core.logger import get_logger
from warden.core.mfa.codes import TotpSecretProvider, generate_otp, new_salt, otp_digest, verify_otp, verify_totp
from warden.core.mfa.delivery import DispatchQueue
from warden.core.store import InMemoryStore, KeyValueStore

VERIFIED = "verified"
NOT_FOUND = "not_found"
EXPIRED = "expired"
EXHAUSTED = "exhausted"
INVALID_CODE = "invalid_code"


class MFAResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ok: bool
    reason: str
    challenge_id: str
    user_id: Optional[str] = None
    remaining_attempts: int = 0


@dataclass(frozen=True)
class _Tombstone:
    reason: str
    user_id: str
    at: float


class MFAChallengeCoordinator:
    """
    Issues and verifies second-factor challenges.

    Each challenge ends exactly once: verified, expired or exhausted. The
    terminal outcome is kept as a tombstone after the challenge is deleted so a
    late attempt reports why it was rejected instead of `not_found`.
    """

    def __init__(
        self,
        *,
        audit: Any,
        sessions: Any,
        dispatch: Optional[DispatchQueue] = None,
        totp_secrets: Optional[TotpSecretProvider] = None,
        limiter: Any = None,
        challenges: Optional[KeyValueStore[MFAChallenge]] = None,
        ttl_seconds: int = 5 * 60,
        max_attempts: int = 3,
        code_digits: int = 6,
        totp_valid_window: int = 1,
        tombstone_seconds: int = 60 * 60,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.audit = audit
        self.sessions = sessions
        self.dispatch = dispatch
        self.totp_secrets = totp_secrets
        self.limiter = limiter
        self.challenges: KeyValueStore[MFAChallenge] = challenges if challenges is not None else InMemoryStore()
        self._tombstones: KeyValueStore[_Tombstone] = InMemoryStore()
        self.ttl_seconds = int(ttl_seconds)
        self.max_attempts = int(max_attempts)
        self.code_digits = int(code_digits)
        self.totp_valid_window = int(totp_valid_window)
        self.tombstone_seconds = int(tombstone_seconds)
        self.clock = clock
        self.logger = logger or get_logger()

    # ---- issue ----
    def initiate(self, user_id: str, method: Union[MFAMethod, str]) -> MFAChallenge:
        method = MFAMethod(method)
        if self.limiter is not None:
            self.limiter.check("mfa_verification", user_id=user_id)
        self._prune_tombstones()
        now = float(self.clock())
        code: Optional[str] = None
        salt: Optional[str] = None
        digest: Optional[str] = None
        if method.out_of_band:
            code = generate_otp(self.code_digits)
            salt = new_salt()
            digest = otp_digest(code, salt)
        challenge = MFAChallenge(
            user_id=user_id,
            method=method,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            max_attempts=self.max_attempts,
            code_salt=salt,
            code_digest=digest,
        )
        self.challenges.put(challenge.challenge_id, challenge)
        self.audit.log(
            "mfa_challenge_initiated",
            "mfa",
            "success",
            user_id=user_id,
            details={"challenge_id": challenge.challenge_id, "method": method.value, "expires_at": challenge.expires_at},
        )
        if code is not None:
            if self.dispatch is not None:
                self.dispatch.submit(user_id, challenge.challenge_id, method.value, code)
            else:
                self.logger.warning(f"No delivery channel configured for MFA method={method.value}")
        return challenge

    def get_challenge(self, challenge_id: str) -> Optional[MFAChallenge]:
        return self.challenges.get(str(challenge_id))

    # ---- verify ----
    def _check_code(self, challenge: MFAChallenge, code: str, now: float) -> bool:
        if challenge.method is MFAMethod.totp:
            secret = self.totp_secrets(challenge.user_id) if self.totp_secrets is not None else None
            return verify_totp(secret, code, at=now, valid_window=self.totp_valid_window)
        return verify_otp(code, salt=challenge.code_salt, digest=challenge.code_digest)

    def attempt(self, challenge_id: str, code: str) -> MFAResult:
        cid = str(challenge_id or "")
        now = float(self.clock())
        seen: List[MFAChallenge] = []
        outcome: List[str] = []

        def _step(cur: Optional[MFAChallenge]) -> Optional[MFAChallenge]:
            if cur is None:
                outcome.append(NOT_FOUND)
                return None
            seen.append(cur)
            # rejections below never touch the attempt counter
            if cur.is_expired(now):
                outcome.append(EXPIRED)
                return None
            if cur.is_exhausted():
                outcome.append(EXHAUSTED)
                return None
            bumped = cur.model_copy(update={"attempts": cur.attempts + 1})
            seen[0] = bumped
            if self._check_code(bumped, code, now):
                outcome.append(VERIFIED)
                return None
            if bumped.is_exhausted():
                outcome.append(EXHAUSTED)
                return None
            outcome.append(INVALID_CODE)
            return bumped

        if cid:
            self.challenges.update(cid, _step)
        else:
            outcome.append(NOT_FOUND)
        reason = outcome[0]
        challenge = seen[0] if seen else None
        user_id = challenge.user_id if challenge is not None else None

        if challenge is None:
            tomb = self._tombstones.get(cid) if cid else None
            if tomb is not None:
                reason, user_id = tomb.reason, tomb.user_id
                if reason == VERIFIED:
                    # already consumed; a replay is not a fresh success
                    reason = NOT_FOUND
        elif reason in (VERIFIED, EXPIRED, EXHAUSTED):
            self._tombstones.put(cid, _Tombstone(reason=reason, user_id=challenge.user_id, at=now))

        ok = reason == VERIFIED and challenge is not None
        remaining = challenge.remaining_attempts if (challenge is not None and reason == INVALID_CODE) else 0
        if ok:
            self.sessions.mark_mfa_verified(challenge.user_id)

        self.audit.log(
            "mfa_verification",
            "mfa",
            "success" if ok else "failure",
            user_id=user_id,
            details={
                "challenge_id": cid,
                "method": challenge.method.value if challenge is not None else None,
                "reason": reason,
                "attempts": challenge.attempts if challenge is not None else None,
                "remaining_attempts": remaining,
            },
        )
        return MFAResult(ok=ok, reason=reason, challenge_id=cid, user_id=user_id, remaining_attempts=remaining)

    def verify(self, challenge_id: str, code: str) -> bool:
        return self.attempt(challenge_id, code).ok

    def verify_or_raise(self, challenge_id: str, code: str) -> MFAResult:
        result = self.attempt(challenge_id, code)
        if result.ok:
            return result
        if result.reason == INVALID_CODE:
            raise MFACodeMismatchError(remaining_attempts=result.remaining_attempts)
        raise MFA_ERRORS_BY_REASON[result.reason]()

    def _prune_tombstones(self) -> None:
        cutoff = float(self.clock()) - self.tombstone_seconds
        for cid, tomb in self._tombstones.items():
            if tomb.at < cutoff:
                self._tombstones.delete(cid)
