from __future__ import annotations

from warden.core.redaction import MASK, is_sensitive_key, redact


def test_credential_keys_are_masked():
    out = redact({"client_secret": "s", "refresh_token": "r", "Code": "123456", "reason": "mismatch", "key_id": "ab12"})
    assert out == {"client_secret": MASK, "refresh_token": MASK, "Code": MASK, "reason": "mismatch", "key_id": "ab12"}


def test_free_text_is_scrubbed():
    s = redact("sent Authorization: Bearer eyJhbGciOi.x.y with code=123456&state=abc")
    assert "eyJhbGciOi" not in s
    assert "123456" not in s
    assert "state=abc" in s


def test_nesting_and_size_are_capped():
    deep = {"a": {"b": {"c": {"d": {"e": {"f": {"g": 1}}}}}}}
    assert "<nested>" in str(redact(deep))
    big = {f"k{i}": i for i in range(60)}
    out = redact(big)
    assert out["<truncated>"] == 10
    assert redact(b"\x00\x01") == "<2 bytes>"


def test_sensitive_key_rules():
    assert is_sensitive_key("MASTER_KEY")
    assert not is_sensitive_key("keyboard")
