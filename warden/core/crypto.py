from __future__ import annotations

import base64
import binascii
import hashlib
import os
import re
import secrets
from typing import Any, Literal, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, ConfigDict, ValidationError

from warden.core.classification import DataClassification
from warden.core.errors import ConfigError, EncryptionError

ALGORITHM = "AES-256-GCM"
KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16
SALT_BYTES = 16
AAD_PREFIX = b"warden.payload.v1|"
_B64_URLSAFE = re.compile(r"[A-Za-z0-9_-]*={0,2}")

# Documented password work factor (scrypt): N=2**14, r=8, p=1, 32-byte output.
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_LENGTH = 32


class MasterKeyMissingError(RuntimeError):
    pass


class EncryptedPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ciphertext: str
    iv: str
    tag: str
    classification: DataClassification = DataClassification.INTERNAL
    algorithm: Literal["AES-256-GCM"] = ALGORITHM


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    # urlsafe_b64decode silently drops characters outside the alphabet
    if len(s) % 4 or not _B64_URLSAFE.fullmatch(s):
        raise ValueError("Malformed base64 field.")
    return base64.urlsafe_b64decode(s.encode("ascii"))


def key_id_from_key_bytes(key: bytes) -> str:
    return hashlib.sha256(key).hexdigest()[:16]


def generate_master_key_bytes() -> bytes:
    # AES-256 key
    return secrets.token_bytes(KEY_BYTES)


def write_key_file(path: str, key_bytes: bytes) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(key_bytes)
    if os.name != "nt":
        os.chmod(path, 0o600)


def read_key_file(path: str) -> bytes:
    if not os.path.exists(path):
        raise MasterKeyMissingError(f"Master key not found at {path!r}")
    with open(path, "rb") as f:
        b = f.read()
    if len(b) != KEY_BYTES:
        raise ValueError("Master key must be 32 bytes (AES-256).")
    return b


def load_master_key(encryption_cfg: Any, *, logger: Any = None) -> bytes:
    """
    Resolve the process master key: hex from config/env first, then a key
    file. With neither configured an ephemeral key is generated, which makes
    every stored payload unreadable after restart.
    """
    hex_key = encryption_cfg.master_key_hex.get_secret_value() if encryption_cfg.master_key_hex else ""
    if hex_key:
        try:
            key = bytes.fromhex(hex_key.strip())
        except ValueError as e:
            raise ConfigError("Master key must be hex encoded.") from e
        if len(key) != KEY_BYTES:
            raise ConfigError("Master key must be 32 bytes (64 hex characters).")
        return key
    if encryption_cfg.master_key_path:
        try:
            return read_key_file(encryption_cfg.master_key_path)
        except (MasterKeyMissingError, ValueError) as e:
            raise ConfigError("Master key file unusable.", path=encryption_cfg.master_key_path, error=str(e)) from e
    if logger is not None:
        logger.warning("No master key configured; using an ephemeral key for this process.")
    return generate_master_key_bytes()


def _aad(classification: DataClassification) -> bytes:
    # binds the label: relabelled payloads fail authentication
    return AAD_PREFIX + classification.value.encode("ascii")


def aesgcm_encrypt(key: bytes, plaintext: bytes, *, aad: bytes) -> tuple[bytes, bytes, bytes]:
    iv = secrets.token_bytes(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext, aad)
    return iv, sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]


def aesgcm_decrypt(key: bytes, iv: bytes, ciphertext: bytes, tag: bytes, *, aad: bytes) -> bytes:
    if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
        raise ValueError("Malformed payload.")
    return AESGCM(key).decrypt(iv, ciphertext + tag, aad)


def _scrypt(password: str, salt: bytes, *, n: int, r: int, p: int) -> bytes:
    kdf = Scrypt(salt=salt, length=SCRYPT_LENGTH, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


class EncryptionService:
    """
    Authenticated encryption, hashing and password hashing.

    Every public operation writes exactly one audit entry. Audit details carry
    lengths, classifications and algorithm names only; never plaintext or key
    material.
    """

    def __init__(
        self,
        *,
        master_key: bytes,
        audit: Any,
        scrypt_n: int = SCRYPT_N,
        scrypt_r: int = SCRYPT_R,
        scrypt_p: int = SCRYPT_P,
    ):
        if len(master_key) != KEY_BYTES:
            raise ConfigError("Master key must be 32 bytes (AES-256).")
        self._key = master_key
        self.audit = audit
        self.key_id = key_id_from_key_bytes(master_key)
        self.scrypt_n = int(scrypt_n)
        self.scrypt_r = int(scrypt_r)
        self.scrypt_p = int(scrypt_p)

    def __repr__(self) -> str:
        return f"EncryptionService(key_id={self.key_id!r}, algorithm={ALGORITHM!r})"

    def _audit(self, action: str, outcome: str, **details: Any) -> None:
        self.audit.log(action, "sensitive_data", outcome, details={"algorithm": ALGORITHM, "key_id": self.key_id, **details})

    # ---- authenticated encryption ----
    def encrypt(self, plaintext: str, classification: DataClassification = DataClassification.INTERNAL) -> EncryptedPayload:
        try:
            classification = DataClassification(classification)
            data = plaintext.encode("utf-8")
            iv, ct, tag = aesgcm_encrypt(self._key, data, aad=_aad(classification))
        except Exception as e:  # noqa: BLE001
            label = getattr(classification, "value", None)
            self._audit("data_encryption", "failure", classification=label, error=e.__class__.__name__)
            raise EncryptionError() from e
        self._audit("data_encryption", "success", classification=classification.value, data_length=len(data))
        return EncryptedPayload(ciphertext=_b64e(ct), iv=_b64e(iv), tag=_b64e(tag), classification=classification)

    def decrypt(self, payload: Union[EncryptedPayload, dict]) -> str:
        classification: Optional[str] = None
        try:
            if not isinstance(payload, EncryptedPayload):
                payload = EncryptedPayload.model_validate(payload)
            classification = payload.classification.value
            pt = aesgcm_decrypt(
                self._key,
                _b64d(payload.iv),
                _b64d(payload.ciphertext),
                _b64d(payload.tag),
                aad=_aad(payload.classification),
            )
            text = pt.decode("utf-8")
        except (InvalidTag, ValidationError, ValueError, binascii.Error, TypeError) as e:
            self._audit("data_decryption", "failure", classification=classification, error="decryption_failed")
            raise EncryptionError() from e
        self._audit("data_decryption", "success", classification=classification)
        return text

    # ---- hashing ----
    def hash(self, data: Union[str, bytes]) -> str:
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        digest = hashlib.sha256(raw).hexdigest()
        self.audit.log("data_hash", "integrity", "success", details={"algorithm": "SHA-256", "data_length": len(raw)})
        return digest

    def hash_password(self, password: str) -> str:
        salt = secrets.token_bytes(SALT_BYTES)
        digest = _scrypt(password, salt, n=self.scrypt_n, r=self.scrypt_r, p=self.scrypt_p)
        self.audit.log("password_hash", "credentials", "success", details={"kdf": "scrypt", "n": self.scrypt_n})
        return f"scrypt${self.scrypt_n}${self.scrypt_r}${self.scrypt_p}${salt.hex()}${digest.hex()}"

    def verify_password(self, password: str, salted_hash: str) -> bool:
        try:
            name, n, r, p, salt_hex, digest_hex = str(salted_hash).split("$")
            if name != "scrypt":
                raise ValueError("unsupported kdf")
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(digest_hex)
            actual = _scrypt(password, salt, n=int(n), r=int(r), p=int(p))
        except ValueError:
            self.audit.log("password_verification", "credentials", "failure", details={"reason": "malformed_hash"})
            return False
        ok = secrets.compare_digest(actual, expected)
        self.audit.log("password_verification", "credentials", "success" if ok else "failure", details={"kdf": "scrypt"})
        return ok

    @staticmethod
    def generate_token(nbytes: int = 32) -> str:
        return secrets.token_hex(nbytes)
