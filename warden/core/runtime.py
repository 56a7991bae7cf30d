from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from warden.core.audit import AuditLog
from warden.core.biometric import BiometricVerifier, SimilarityFn, sequence_similarity
from warden.core.circuit_breaker import BreakerConfig, CircuitBreaker
from warden.core.compliance import ComplianceValidator
from warden.core.config.models import WardenConfig
from warden.core.crypto import EncryptionService, load_master_key
from warden.core.gateway import AuthenticationGateway
from warden.core.logger import get_logger
from warden.core.metrics import SecurityMetrics, security_metrics
from warden.core.mfa import DeliveryChannel, DispatchQueue, MFAChallengeCoordinator, build_delivery_channel
from warden.core.mfa.codes import TotpSecretProvider
from warden.core.oauth import IdentityProviderClient
from warden.core.rate_limit import AttemptLimiter
from warden.core.sessions import SessionManager


@dataclass
class WardenCore:
    cfg: WardenConfig
    audit: AuditLog
    encryption: EncryptionService
    sessions: SessionManager
    mfa: MFAChallengeCoordinator
    biometric: BiometricVerifier
    gateway: AuthenticationGateway
    compliance: ComplianceValidator
    limiter: AttemptLimiter
    dispatch: DispatchQueue
    breaker: CircuitBreaker
    clock: Callable[[], float] = time.time

    @classmethod
    def build(
        cls,
        cfg: WardenConfig,
        *,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
        master_key: Optional[bytes] = None,
        idp: Any = None,
        delivery_channel: Optional[DeliveryChannel] = None,
        totp_secrets: Optional[TotpSecretProvider] = None,
        similarity: SimilarityFn = sequence_similarity,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "WardenCore":
        logger = logger or get_logger()
        audit = AuditLog.from_config(cfg.audit, cfg.compliance, clock=clock, logger=logger)
        key = master_key if master_key is not None else load_master_key(cfg.encryption, logger=logger)
        encryption = EncryptionService(
            master_key=key,
            audit=audit,
            scrypt_n=cfg.encryption.scrypt_n,
            scrypt_r=cfg.encryption.scrypt_r,
            scrypt_p=cfg.encryption.scrypt_p,
        )
        sessions = SessionManager(audit=audit, lifetime_seconds=cfg.session.lifetime_seconds, clock=clock, logger=logger)
        limiter = AttemptLimiter(audit=audit, max_failures=cfg.mfa.max_failures_per_window, window_seconds=cfg.mfa.failure_window_seconds)
        dispatch = DispatchQueue(
            delivery_channel or build_delivery_channel(cfg.mfa, logger),
            workers=cfg.mfa.dispatch_workers,
            queue_size=cfg.mfa.dispatch_queue_size,
            retries=cfg.mfa.dispatch_retries,
            backoff_seconds=cfg.mfa.dispatch_backoff_seconds,
            timeout_seconds=cfg.mfa.dispatch_timeout_seconds,
            audit=audit,
            sleep=sleep,
            logger=logger,
        )
        mfa = MFAChallengeCoordinator(
            audit=audit,
            sessions=sessions,
            dispatch=dispatch,
            totp_secrets=totp_secrets,
            limiter=limiter,
            ttl_seconds=cfg.mfa.challenge_ttl_seconds,
            max_attempts=cfg.mfa.max_attempts,
            code_digits=cfg.mfa.code_digits,
            totp_valid_window=cfg.mfa.totp_valid_window,
            clock=clock,
            logger=logger,
        )
        biometric = BiometricVerifier(
            encryption=encryption,
            audit=audit,
            sessions=sessions,
            similarity=similarity,
            threshold=cfg.biometric.similarity_threshold,
            default_confidence=cfg.biometric.default_confidence,
            clock=clock,
            logger=logger,
        )
        breaker = CircuitBreaker(
            BreakerConfig(
                failures=cfg.oauth.breaker_failures,
                window_seconds=cfg.oauth.breaker_window_seconds,
                cooldown_seconds=cfg.oauth.breaker_cooldown_seconds,
            ),
            name="idp",
            clock=clock,
            logger=logger,
        )
        gateway = AuthenticationGateway(
            cfg=cfg.oauth,
            idp=idp or IdentityProviderClient(cfg.oauth),
            sessions=sessions,
            audit=audit,
            breaker=breaker,
            clock=clock,
            logger=logger,
        )
        compliance = ComplianceValidator(audit=audit, logger=logger)
        return cls(
            cfg=cfg,
            audit=audit,
            encryption=encryption,
            sessions=sessions,
            mfa=mfa,
            biometric=biometric,
            gateway=gateway,
            compliance=compliance,
            limiter=limiter,
            dispatch=dispatch,
            breaker=breaker,
            clock=clock,
        )

    def security_metrics(self) -> SecurityMetrics:
        return security_metrics(sessions=self.sessions, audit=self.audit, biometric=self.biometric, breaker=self.breaker, clock=self.clock)

    def shutdown(self) -> None:
        self.dispatch.shutdown(wait=True)
