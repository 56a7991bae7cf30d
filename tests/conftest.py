from __future__ import annotations

import pytest

from warden.core.audit import AuditLog
from warden.core.config.models import WardenConfig
from warden.core.crypto import EncryptionService, generate_master_key_bytes
from warden.core.runtime import WardenCore
from warden.core.sessions import SessionManager
from tests.helpers.fakes import FakeClock, FakeIdentityProvider, InlineDispatch, RecordingChannel

# cheap scrypt for tests; production default stays at 2**14
TEST_SCRYPT_N = 2**10


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit(clock):
    return AuditLog(clock=clock)


@pytest.fixture
def encryption(audit):
    return EncryptionService(master_key=generate_master_key_bytes(), audit=audit, scrypt_n=TEST_SCRYPT_N)


@pytest.fixture
def sessions(audit, clock):
    return SessionManager(audit=audit, clock=clock)


@pytest.fixture
def idp():
    return FakeIdentityProvider(
        claims={
            "code-doctor": {
                "sub": "u-doc",
                "email": "doc@example.org",
                "name": "Dr. Who",
                "roles": ["healthcare_provider"],
                "clearance": "CONFIDENTIAL",
                "department": "MEDICAL",
                "mfa_enabled": True,
            },
            "code-admin": {
                "sub": "u-admin",
                "email": "admin@example.org",
                "name": "Admin",
                "roles": ["admin"],
                "clearance": "TOP_SECRET",
            },
            "code-plain": {"sub": "u-plain", "email": "plain@example.org", "name": "Plain"},
        }
    )


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def core(tmp_path, clock, idp, channel):
    cfg = WardenConfig.model_validate(
        {
            "log_dir": None,
            "encryption": {"scrypt_n": TEST_SCRYPT_N},
            "audit": {"path_jsonl": str(tmp_path / "audit" / "audit.jsonl")},
            "web": {"per_ip_per_minute": 1000},
        }
    )
    c = WardenCore.build(cfg, clock=clock, master_key=generate_master_key_bytes(), idp=idp, delivery_channel=channel, sleep=lambda _s: None)
    c.mfa.dispatch = InlineDispatch(channel)
    yield c
    c.shutdown()
