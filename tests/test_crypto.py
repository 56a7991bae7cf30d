from __future__ import annotations

import base64
import os

import pytest
from pydantic import SecretStr

from warden.core.classification import DataClassification
from warden.core.config.models import EncryptionConfig
from warden.core.crypto import (
    EncryptionService,
    generate_master_key_bytes,
    load_master_key,
    write_key_file,
)
from warden.core.errors import ConfigError, EncryptionError


def _flip_first_byte(b64: str) -> str:
    raw = bytearray(base64.urlsafe_b64decode(b64))
    raw[0] ^= 0x01
    return base64.urlsafe_b64encode(bytes(raw)).decode("ascii")


@pytest.mark.parametrize("classification", list(DataClassification))
def test_decrypt_returns_original_plaintext(encryption, classification):
    payload = encryption.encrypt("patient 123-45-6789 ✓", classification)
    assert payload.classification == classification
    assert payload.algorithm == "AES-256-GCM"
    assert encryption.decrypt(payload) == "patient 123-45-6789 ✓"


def test_each_encryption_uses_a_fresh_iv(encryption):
    a = encryption.encrypt("same")
    b = encryption.encrypt("same")
    assert a.iv != b.iv
    assert a.ciphertext != b.ciphertext
    assert len(base64.urlsafe_b64decode(a.iv)) == 12


@pytest.mark.parametrize("field", ["ciphertext", "tag", "iv"])
def test_tampered_payload_is_rejected(encryption, field):
    payload = encryption.encrypt("top secret plans")
    bad = payload.model_copy(update={field: _flip_first_byte(getattr(payload, field))})
    with pytest.raises(EncryptionError):
        encryption.decrypt(bad)


def test_relabelled_payload_is_rejected(encryption):
    payload = encryption.encrypt("x", DataClassification.PHI)
    with pytest.raises(EncryptionError):
        encryption.decrypt(payload.model_copy(update={"classification": DataClassification.PUBLIC}))


def test_wrong_key_and_tamper_share_one_message(encryption, audit):
    other = EncryptionService(master_key=generate_master_key_bytes(), audit=audit)
    payload = encryption.encrypt("hello")
    with pytest.raises(EncryptionError) as wrong_key:
        other.decrypt(payload)
    with pytest.raises(EncryptionError) as tampered:
        encryption.decrypt(payload.model_copy(update={"tag": _flip_first_byte(payload.tag)}))
    assert wrong_key.value.user_message == tampered.value.user_message


def test_malformed_payload_dict_is_encryption_error(encryption):
    with pytest.raises(EncryptionError):
        encryption.decrypt({"ciphertext": "!!", "iv": "x", "tag": "y"})


def test_encryption_is_audited_without_plaintext(encryption, audit):
    payload = encryption.encrypt("very-private-text", DataClassification.CONFIDENTIAL)
    encryption.decrypt(payload)
    enc = audit.entries(action="data_encryption")
    dec = audit.entries(action="data_decryption")
    assert len(enc) == 1 and len(dec) == 1
    assert enc[0].details["classification"] == "confidential"
    assert enc[0].details["data_length"] == len("very-private-text")
    assert "very-private-text" not in str([e.model_dump() for e in audit.entries()])


def test_failed_decryption_is_audited_as_failure(encryption, audit):
    payload = encryption.encrypt("hello")
    with pytest.raises(EncryptionError):
        encryption.decrypt(payload.model_copy(update={"tag": _flip_first_byte(payload.tag)}))
    assert audit.entries(action="data_decryption")[-1].outcome.value == "failure"


@pytest.mark.parametrize(
    "plaintext,classification,error",
    [("lone \ud800 surrogate", DataClassification.PHI, "UnicodeEncodeError"), ("fine", "ultra_secret", "ValueError")],
)
def test_bad_encrypt_input_is_an_audited_encryption_error(encryption, audit, plaintext, classification, error):
    with pytest.raises(EncryptionError):
        encryption.encrypt(plaintext, classification)
    last = audit.entries(action="data_encryption")[-1]
    assert last.outcome.value == "failure"
    assert last.details["error"] == error


def test_base64_outside_the_alphabet_is_rejected(encryption):
    payload = encryption.encrypt("hello")
    # a lenient decoder would skip the junk and recover the real iv
    padded = payload.iv[:4] + "@@@@" + payload.iv[4:]
    with pytest.raises(EncryptionError):
        encryption.decrypt(payload.model_copy(update={"iv": padded}))


def test_payload_with_foreign_algorithm_is_rejected(encryption):
    raw = encryption.encrypt("hello").model_dump(mode="json")
    with pytest.raises(EncryptionError):
        encryption.decrypt({**raw, "algorithm": "DES"})


def test_hash_is_sha256_hex(encryption, audit):
    assert encryption.hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert len(audit.entries(action="data_hash")) == 1


def test_password_hash_and_verify(encryption):
    stored = encryption.hash_password("correct horse")
    assert stored.startswith("scrypt$")
    assert stored != encryption.hash_password("correct horse")
    assert encryption.verify_password("correct horse", stored) is True
    assert encryption.verify_password("wrong horse", stored) is False


def test_malformed_password_hash_verifies_false(encryption, audit):
    assert encryption.verify_password("pw", "not-a-hash") is False
    assert audit.entries(action="password_verification")[-1].details["reason"] == "malformed_hash"


def test_generate_token_is_random_hex(encryption):
    a, b = encryption.generate_token(), encryption.generate_token()
    assert a != b
    assert len(a) == 64
    int(a, 16)


def test_load_master_key_from_hex_and_file(tmp_path):
    key = generate_master_key_bytes()
    assert load_master_key(EncryptionConfig(master_key_hex=SecretStr(key.hex()))) == key
    path = str(tmp_path / "keys" / "master.bin")
    write_key_file(path, key)
    assert load_master_key(EncryptionConfig(master_key_path=path)) == key
    if os.name != "nt":
        assert oct(os.stat(path).st_mode & 0o777) == "0o600"


def test_load_master_key_rejects_bad_values(tmp_path):
    with pytest.raises(ConfigError):
        load_master_key(EncryptionConfig(master_key_hex=SecretStr("abcd")))
    with pytest.raises(ConfigError):
        load_master_key(EncryptionConfig(master_key_path=str(tmp_path / "missing.bin")))


def test_ephemeral_key_when_unconfigured():
    class L:
        warned = []

        def warning(self, msg):
            self.warned.append(msg)

    logger = L()
    key = load_master_key(EncryptionConfig(), logger=logger)
    assert len(key) == 32
    assert logger.warned
