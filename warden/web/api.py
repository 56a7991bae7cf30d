from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from warden.core.errors import AuthenticationError, MFAChallengeNotFoundError, PermissionDeniedError, WardenError
from warden.core.identity.models import AuthSession, AuthUser
from warden.core.logger import get_logger
from warden.core.permissions import ADMIN_WILDCARD, has_permission
from warden.core.runtime import WardenCore
from warden.web.middleware import WebSecurityMiddleware, client_ip
from warden.web.models import (
    AuthorizationResponse,
    BiometricRegisterRequest,
    BiometricVerifyRequest,
    ChallengeRequest,
    ChallengeResponse,
    ComplianceRequest,
    LoginResponse,
    OkResponse,
    UserResponse,
    VerifyRequest,
)

AUDIT_READ_PERMISSION = "read:audit_logs"

_STATUS_BY_CODE = {
    "authentication_failed": 401,
    "biometric_mismatch": 401,
    "permission_denied": 403,
    "rate_limited": 429,
    "validation_error": 400,
    "encryption_error": 500,
    "config_error": 500,
}


def status_for(code: str) -> int:
    if code in _STATUS_BY_CODE:
        return _STATUS_BY_CODE[code]
    if code.startswith("mfa_"):
        return 401
    return 500


def create_app(core: WardenCore, *, logger: Any = None) -> FastAPI:
    logger = logger or get_logger()
    app = FastAPI(title="Warden", version="0.1.0")
    cookie_name = core.cfg.session.cookie_name

    if core.cfg.web.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=core.cfg.web.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Trace-Id"],
        )
    app.middleware("http")(WebSecurityMiddleware(web_cfg=core.cfg.web, audit=core.audit, logger=logger))

    @app.exception_handler(WardenError)
    async def warden_error_handler(request: Request, exc: WardenError):
        code = status_for(exc.code)
        if code >= 500:
            logger.error(f"Request failed ({exc.code}) trace={getattr(request.state, 'trace_id', '-')}")
        body = {"detail": exc.user_message, "code": exc.code}
        remaining = getattr(exc, "remaining_attempts", None)
        if remaining is not None:
            body["remaining_attempts"] = remaining
        return JSONResponse(status_code=code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    # ---- dependencies ----
    def _carrier(request: Request) -> tuple[Optional[str], Optional[str]]:
        return request.headers.get("Authorization"), request.cookies.get(cookie_name)

    def _resolve(request: Request, *, require_verified: bool) -> AuthUser:
        authorization, cookie = _carrier(request)
        user = core.gateway.authenticate_request(authorization, cookie, require_verified=require_verified)
        if user is None:
            reason = "unverified_session" if require_verified and core.gateway.authenticate_request(authorization, cookie) else "no_session"
            core.audit.log("request_authentication", request.url.path, "failure", ip_address=client_ip(request), details={"reason": reason})
            raise AuthenticationError(reason=reason)
        return user

    def current_user(request: Request) -> AuthUser:
        return _resolve(request, require_verified=False)

    def verified_user(request: Request) -> AuthUser:
        return _resolve(request, require_verified=True)

    def current_session(request: Request) -> Optional[AuthSession]:
        return core.gateway.session_for_request(*_carrier(request))

    def _require(user: AuthUser, permission: str, request: Request) -> None:
        if has_permission(user, permission):
            return
        core.audit.log("access_check", request.url.path, "denied", user_id=user.user_id, ip_address=client_ip(request), details={"permission": permission})
        raise PermissionDeniedError(permission=permission)

    # ---- routes ----
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/auth/login", response_model=AuthorizationResponse)
    def login():
        req = core.gateway.authorization_url()
        return AuthorizationResponse(url=req.url, state=req.state)

    @app.get("/auth/callback", response_model=LoginResponse)
    def callback(request: Request, response: Response, code: Optional[str] = None, state: Optional[str] = None):
        result = core.gateway.handle_callback(code, state, ip_address=client_ip(request), user_agent=request.headers.get("user-agent"))
        response.set_cookie(
            cookie_name,
            result.session.session_id,
            max_age=core.cfg.session.lifetime_seconds,
            secure=core.cfg.session.cookie_secure,
            httponly=True,
            samesite="strict",
        )
        return LoginResponse(
            user_id=result.user.user_id,
            expires_at=result.session.expires_at,
            mfa_required=not result.session.mfa_verified,
            biometric_required=not result.session.biometric_verified,
        )

    @app.post("/auth/logout", response_model=OkResponse)
    def logout(response: Response, session: Optional[AuthSession] = Depends(current_session)):
        ended = core.gateway.logout(session.session_id) if session is not None else False
        response.delete_cookie(cookie_name, secure=core.cfg.session.cookie_secure, httponly=True, samesite="strict")
        return OkResponse(ok=True, message="Signed out." if ended else "No active session.")

    @app.get("/auth/me", response_model=UserResponse)
    def me(user: AuthUser = Depends(current_user), session: Optional[AuthSession] = Depends(current_session)):
        return UserResponse(
            user_id=user.user_id,
            email=user.email,
            name=user.name,
            roles=sorted(user.roles),
            clearance=user.clearance.value,
            department=user.department,
            permissions=sorted(user.permissions),
            mfa_verified=bool(session and session.mfa_verified),
            biometric_verified=bool(session and session.biometric_verified),
        )

    @app.post("/mfa/challenges", response_model=ChallengeResponse)
    def start_challenge(req: ChallengeRequest, user: AuthUser = Depends(current_user)):
        ch = core.mfa.initiate(user.user_id, req.method)
        return ChallengeResponse(challenge_id=ch.challenge_id, method=ch.method, expires_at=ch.expires_at, max_attempts=ch.max_attempts)

    @app.post("/mfa/verify", response_model=OkResponse)
    def verify_challenge(req: VerifyRequest, user: AuthUser = Depends(current_user)):
        pending = core.mfa.get_challenge(req.challenge_id)
        if pending is not None and pending.user_id != user.user_id:
            core.audit.log(
                "mfa_verification",
                "mfa",
                "failure",
                user_id=user.user_id,
                details={"challenge_id": req.challenge_id, "reason": "not_found", "owner_mismatch": True},
            )
            raise MFAChallengeNotFoundError()
        core.mfa.verify_or_raise(req.challenge_id, req.code)
        return OkResponse(ok=True, message="Verified.")

    @app.post("/biometrics/register", response_model=OkResponse)
    def register_biometric(req: BiometricRegisterRequest, user: AuthUser = Depends(current_user)):
        ok = core.biometric.register(user.user_id, req.modality, req.template, req.device_id, req.confidence)
        return OkResponse(ok=ok, message="Registered." if ok else "Registration failed.")

    @app.post("/biometrics/verify", response_model=OkResponse)
    def verify_biometric(req: BiometricVerifyRequest, user: AuthUser = Depends(current_user)):
        core.biometric.verify_or_raise(user.user_id, req.modality, req.template, req.device_id)
        return OkResponse(ok=True, message="Verified.")

    @app.get("/audit/statistics")
    def audit_statistics(request: Request, timeframe: str = "day", user: AuthUser = Depends(verified_user)):
        _require(user, AUDIT_READ_PERMISSION, request)
        try:
            stats = core.audit.statistics(timeframe)
        except ValueError:
            return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})
        return stats.model_dump()

    @app.get("/audit/integrity")
    def audit_integrity(request: Request, user: AuthUser = Depends(verified_user)):
        _require(user, AUDIT_READ_PERMISSION, request)
        return core.audit.verify_integrity().model_dump()

    @app.post("/compliance/validate")
    def compliance_validate(req: ComplianceRequest, user: AuthUser = Depends(verified_user)):
        return core.compliance.validate(req.action, req.data, req.framework).model_dump()

    @app.get("/metrics/security")
    def metrics(request: Request, user: AuthUser = Depends(verified_user)):
        _require(user, ADMIN_WILDCARD, request)
        return core.security_metrics().model_dump()

    return app
