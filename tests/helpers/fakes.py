from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from warden.core.oauth import IdentityProviderError, IdentityProviderTimeout, TokenResponse


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def time(self) -> float:
        return self._t

    __call__ = time

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


@dataclass
class FakeIdentityProvider:
    """Stands in for IdentityProviderClient; codes map to userinfo claims."""

    claims: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    fail_exchange: Optional[str] = None
    timeout: bool = False
    exchanged: List[str] = field(default_factory=list)
    _tokens: Dict[str, str] = field(default_factory=dict)

    def exchange_code(self, code: str) -> TokenResponse:
        if self.timeout:
            raise IdentityProviderTimeout()
        if self.fail_exchange:
            raise IdentityProviderError(self.fail_exchange, status=400)
        if code not in self.claims:
            raise IdentityProviderError("token_exchange_failed", status=400)
        self.exchanged.append(code)
        access = f"at-{code}-{len(self.exchanged)}"
        self._tokens[access] = code
        return TokenResponse(access_token=access, refresh_token=f"rt-{code}")

    def fetch_userinfo(self, access_token: str) -> Dict[str, Any]:
        code = self._tokens.get(access_token)
        if code is None:
            raise IdentityProviderError("userinfo_failed", status=401)
        return dict(self.claims[code])


@dataclass
class RecordingChannel:
    """DeliveryChannel that keeps every delivered code, optionally failing first."""

    fail_times: int = 0
    raise_timeout: bool = False
    sent: List[Dict[str, str]] = field(default_factory=list)
    calls: int = 0
    delivered: threading.Event = field(default_factory=threading.Event)

    def send(self, user_id: str, challenge_id: str, method: str, code: str) -> None:
        self.calls += 1
        if self.raise_timeout:
            self.delivered.set()
            raise TimeoutError("gateway timeout")
        if self.calls <= self.fail_times:
            raise RuntimeError("gateway error")
        self.sent.append({"user_id": user_id, "challenge_id": challenge_id, "method": method, "code": code})
        self.delivered.set()

    def code_for(self, challenge_id: str) -> Optional[str]:
        for s in self.sent:
            if s["challenge_id"] == challenge_id:
                return s["code"]
        return None


class InlineDispatch:
    """Synchronous dispatch for deterministic tests."""

    def __init__(self, channel: RecordingChannel):
        self.channel = channel

    def submit(self, user_id: str, challenge_id: str, method: str, code: str) -> bool:
        self.channel.send(user_id, challenge_id, method, code)
        return True

    def shutdown(self, *, wait: bool = True) -> None:
        return
