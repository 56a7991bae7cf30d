from __future__ import annotations

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from warden.core.config.models import WebConfig
from warden.core.trace import accept_trace_id, bound_trace
from warden.web.security.rate_limit import RateLimiter
from warden.web.security.request_guard import analyze_request, enforce_body_limits, json_depth, parse_json_body

UNANALYZED_PATHS = {"/health"}
MAX_REQUEST_BYTES = 128 * 1024


def client_ip(request: Request) -> Optional[str]:
    return getattr(getattr(request, "client", None), "host", None)


class WebSecurityMiddleware:
    """
    Runs before every route, in order:
    1) trace id
    2) body size + JSON depth guard
    3) per-IP rate limit
    4) header risk analysis (critical requests are refused)
    """

    def __init__(self, *, web_cfg: WebConfig, audit: Any, rate: Optional[RateLimiter] = None, logger: Any = None):
        self.web_cfg = web_cfg
        self.audit = audit
        self.rate = rate or RateLimiter(per_minute=web_cfg.per_ip_per_minute)
        self.logger = logger

    async def __call__(self, request: Request, call_next):  # noqa: ANN001
        trace_id = accept_trace_id(request.headers.get("X-Trace-Id"))
        request.state.trace_id = trace_id
        with bound_trace(trace_id):
            resp = await self._guarded(request, call_next)
        resp.headers["X-Trace-Id"] = trace_id
        return resp

    async def _guarded(self, request: Request, call_next):  # noqa: ANN001
        ip = client_ip(request)
        path = request.url.path
        method = request.method

        if method in {"POST", "PUT", "PATCH"}:
            try:
                body = await request.body()
                enforce_body_limits(body, max_bytes=MAX_REQUEST_BYTES)
                if "application/json" in request.headers.get("content-type", ""):
                    obj = parse_json_body(body)
                    if obj is not None:
                        json_depth(obj, max_depth=10)
            except ValueError as e:
                self.audit.log("request_rejected", path, "denied", ip_address=ip, details={"reason": str(e)})
                return JSONResponse(status_code=413 if "large" in str(e) else 400, content={"detail": "Request rejected.", "code": "validation_error"})

        self.rate.maybe_prune()
        if ip and not self.rate.allow(f"ip:{ip}"):
            self.audit.log("rate_limited", path, "denied", ip_address=ip, details={"scope": "ip"})
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many attempts. Try again later.", "code": "rate_limited"},
                headers={"Retry-After": str(self.rate.retry_after_seconds(f"ip:{ip}"))},
            )

        if self.web_cfg.analyze_requests and path not in UNANALYZED_PATHS:
            analysis = analyze_request(method, dict(request.headers), path, audit=self.audit, ip_address=ip)
            if analysis.risk_level == "critical":
                return JSONResponse(status_code=403, content={"detail": "Request refused.", "code": "permission_denied"})

        try:
            return await call_next(request)
        except Exception as e:
            if self.logger is not None:
                self.logger.error(f"Unhandled web error on {method} {path}: {e.__class__.__name__}")
            raise
