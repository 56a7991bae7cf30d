"""
Scrubbing for anything that leaves a component: audit details and error context.

Credentials are replaced outright by key name. Free text is scanned for bearer
tokens and `name=value` credential pairs. Containers are walked with size and
depth caps so a hostile payload cannot blow up an audit entry.
"""

from __future__ import annotations

import re
from typing import Any, Dict

MASK = "***REDACTED***"

# exact key names
REDACT_KEYS = frozenset(
    {
        "password",
        "passphrase",
        "secret",
        "token",
        "key",
        "api_key",
        "authorization",
        "cookie",
        "code",
        "otp",
        "template",
        "plaintext",
    }
)
# compound names such as client_secret, refresh_token, master_key
_REDACT_SUFFIXES = ("_password", "_secret", "_token", "_key")

_BEARER_RE = re.compile(r"\b(bearer)\s+\S+", re.IGNORECASE)
_PAIR_RE = re.compile(r"(?i)\b(password|token|code|otp|client_secret|api_key)=[^\s&;,]+")

MAX_TEXT = 300
MAX_ITEMS = 50
MAX_DEPTH = 6


def is_sensitive_key(name: str) -> bool:
    k = str(name).lower()
    return k in REDACT_KEYS or k.endswith(_REDACT_SUFFIXES)


def _scrub_text(s: str) -> str:
    s = _BEARER_RE.sub(r"\1 " + MASK, s)
    s = _PAIR_RE.sub(lambda m: f"{m.group(1)}={MASK}", s)
    return s if len(s) <= MAX_TEXT else s[:MAX_TEXT] + "..."


def redact(obj: Any, _depth: int = 0) -> Any:
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return _scrub_text(obj)
    if _depth >= MAX_DEPTH:
        return "<nested>"
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for i, (k, v) in enumerate(obj.items()):
            if i >= MAX_ITEMS:
                out["<truncated>"] = len(obj) - MAX_ITEMS
                break
            out[str(k)] = MASK if is_sensitive_key(k) else redact(v, _depth + 1)
        return out
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [redact(v, _depth + 1) for v in list(obj)[:MAX_ITEMS]]
    if isinstance(obj, (bytes, bytearray)):
        return f"<{len(obj)} bytes>"
    return _scrub_text(str(obj))
