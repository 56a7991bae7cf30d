from __future__ import annotations

import json
import re
import secrets
from typing import Any, List, Mapping, Optional, Pattern

from pydantic import BaseModel, ConfigDict, Field

_BOT_RE = re.compile(r"bot|crawler|spider", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SAFE_CHARS_RE = re.compile(r"[a-zA-Z0-9\s\-_.@]")


class RequestAnalysis(BaseModel):
    model_config = ConfigDict(extra="forbid")

    risk_level: str
    risk_score: int
    threats: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


def risk_level_for(score: int) -> str:
    if score <= 2:
        return "low"
    if score <= 5:
        return "medium"
    if score <= 8:
        return "high"
    return "critical"


def analyze_request(
    method: str,
    headers: Mapping[str, str],
    url: str,
    *,
    audit: Any = None,
    ip_address: Optional[str] = None,
) -> RequestAnalysis:
    """Header heuristics for automated or cross-site traffic; writes one `request_analysis` entry when audited."""
    h = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
    user_agent = h.get("user-agent", "")
    content_type = h.get("content-type", "")
    threats: List[str] = []
    recommendations: List[str] = []
    score = 0

    if _BOT_RE.search(user_agent) and "Googlebot" not in user_agent:
        threats.append("Potential automated bot activity")
        score += 2
    if not h.get("x-requested-with"):
        threats.append("Missing CSRF protection header")
        recommendations.append("Include X-Requested-With header")
        score += 1
    if str(method).upper() == "POST" and "application/json" not in content_type:
        threats.append("Unexpected content type for POST request")
        score += 1

    level = risk_level_for(score)
    if audit is not None:
        audit.log(
            "request_analysis",
            str(url),
            "denied" if level == "critical" else "success",
            ip_address=ip_address,
            details={"risk_level": level, "risk_score": score, "threats": len(threats), "user_agent": user_agent[:100]},
        )
    return RequestAnalysis(risk_level=level, risk_score=score, threats=threats, recommendations=recommendations)


def json_depth(obj: Any, max_depth: int = 10) -> int:
    """JSON nesting depth; raises ValueError past `max_depth`."""
    stack = [(obj, 1)]
    seen_max = 1
    while stack:
        cur, d = stack.pop()
        if d > max_depth:
            raise ValueError("json too deeply nested")
        seen_max = max(seen_max, d)
        if isinstance(cur, dict):
            stack.extend((v, d + 1) for v in cur.values())
        elif isinstance(cur, list):
            stack.extend((v, d + 1) for v in cur)
    return seen_max


def enforce_body_limits(body: bytes, *, max_bytes: int) -> None:
    if body is None:
        return
    if len(body) > int(max_bytes):
        raise ValueError("request too large")
    if b"\x00" in body:
        raise ValueError("binary payload rejected")


def parse_json_body(body: bytes) -> Any:
    if not body:
        return None
    return json.loads(body.decode("utf-8"))


def sanitize_input(value: str, allowed: Pattern[str] = _SAFE_CHARS_RE) -> str:
    return "".join(allowed.findall(str(value or "")))


def validate_email(email: str) -> bool:
    email = str(email or "")
    return len(email) <= 254 and bool(_EMAIL_RE.match(email))


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def validate_csrf_token(token: Optional[str], expected: Optional[str]) -> bool:
    if not token or not expected:
        return False
    return secrets.compare_digest(str(token).encode("utf-8"), str(expected).encode("utf-8"))
