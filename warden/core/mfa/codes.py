from __future__ import annotations

import hashlib
import secrets
from typing import Callable, Optional

import pyotp

# user_id -> base32 TOTP secret, or None when the user has no authenticator enrolled
TotpSecretProvider = Callable[[str], Optional[str]]


def generate_otp(digits: int = 6) -> str:
    return str(secrets.randbelow(10**digits)).zfill(digits)


def new_salt() -> str:
    return secrets.token_hex(16)


def otp_digest(code: str, salt: str) -> str:
    return hashlib.sha256(bytes.fromhex(salt) + str(code).strip().encode("utf-8")).hexdigest()


def verify_otp(code: str, *, salt: Optional[str], digest: Optional[str]) -> bool:
    if not salt or not digest or not code:
        return False
    return secrets.compare_digest(otp_digest(code, salt), digest)


def verify_totp(secret: Optional[str], code: str, *, at: float, valid_window: int = 1) -> bool:
    if not secret or not code:
        return False
    try:
        return bool(pyotp.TOTP(secret).verify(str(code).strip(), for_time=int(at), valid_window=int(valid_window)))
    except (ValueError, TypeError):
        # malformed base32 secret
        return False
