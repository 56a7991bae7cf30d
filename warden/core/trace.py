"""
Per-request correlation ids.

The web middleware binds one id per request; audit entries recorded while it
is bound carry it in `trace_id`. Client-supplied ids are accepted only when
they are short and plain, anything else is replaced by a fresh id.
"""

from __future__ import annotations

import contextlib
import contextvars
import re
import secrets
from typing import Iterator, Optional

_CURRENT: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("warden.trace_id", default=None)
_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_trace_id() -> str:
    return secrets.token_hex(16)


def accept_trace_id(candidate: Optional[str]) -> str:
    if candidate and _CLIENT_ID_RE.match(candidate):
        return candidate
    return new_trace_id()


def current_trace_id() -> Optional[str]:
    return _CURRENT.get()


@contextlib.contextmanager
def bound_trace(trace_id: str) -> Iterator[str]:
    token = _CURRENT.set(trace_id)
    try:
        yield trace_id
    finally:
        _CURRENT.reset(token)
