from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from warden.web.api import create_app, status_for

JSON_HEADERS = {"X-Requested-With": "XMLHttpRequest"}


@pytest.fixture
def client(core):
    # session cookie is Secure, so the client must talk https
    with TestClient(create_app(core), base_url="https://testserver") as c:
        yield c


def _login(client, code):
    state = client.get("/auth/login").json()["state"]
    resp = client.get("/auth/callback", params={"code": code, "state": state})
    assert resp.status_code == 200, resp.text
    return resp


def _wrong(code):
    return "%06d" % ((int(code) + 1) % 10**6)


def _mfa(client, channel):
    ch = client.post("/mfa/challenges", json={"method": "email"}, headers=JSON_HEADERS).json()
    real = channel.code_for(ch["challenge_id"])
    return ch["challenge_id"], real


def test_health_carries_trace_id(client):
    resp = client.get("/health", headers={"X-Trace-Id": "trace-abc"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Trace-Id"] == "trace-abc"


def test_unsafe_trace_id_is_replaced(client):
    resp = client.get("/health", headers={"X-Trace-Id": "bad id<script>"})
    assert resp.headers["X-Trace-Id"] != "bad id<script>"
    assert len(resp.headers["X-Trace-Id"]) == 32


def test_login_sets_hardened_cookie(client):
    resp = _login(client, "code-doctor")
    body = resp.json()
    assert body["user_id"] == "u-doc"
    assert body["mfa_required"] is True
    cookie = resp.headers["set-cookie"].lower()
    assert "warden_session=" in cookie
    assert "secure" in cookie
    assert "httponly" in cookie
    assert "samesite=strict" in cookie


def test_callback_with_bad_state_is_401(client):
    resp = client.get("/auth/callback", params={"code": "code-doctor", "state": "forged"})
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Authentication failed.", "code": "authentication_failed"}


def test_me_requires_session(client, core):
    assert client.get("/auth/me").status_code == 401
    assert core.audit.entries(action="request_authentication")[-1].details["reason"] == "no_session"
    _login(client, "code-doctor")
    me = client.get("/auth/me").json()
    assert me["clearance"] == "CONFIDENTIAL"
    assert "read:patient_data" in me["permissions"]
    assert me["mfa_verified"] is False


def test_bearer_token_authenticates(client, core):
    _login(client, "code-admin")
    session = core.sessions.active_sessions(user_id="u-admin")[0]
    token = session.access_token.get_secret_value()
    client.cookies.clear()
    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "u-admin"


def test_unverified_session_is_refused_on_verified_routes(client, core):
    _login(client, "code-doctor")
    resp = client.post("/compliance/validate", json={"action": "read", "framework": "HIPAA"}, headers=JSON_HEADERS)
    assert resp.status_code == 401
    assert core.audit.entries(action="request_authentication")[-1].details["reason"] == "unverified_session"


def test_mfa_flow_unlocks_verified_routes(client, channel):
    _login(client, "code-doctor")
    cid, code = _mfa(client, channel)
    assert code is not None

    bad = client.post("/mfa/verify", json={"challenge_id": cid, "code": _wrong(code)}, headers=JSON_HEADERS)
    assert bad.status_code == 401
    assert bad.json()["code"] == "mfa_invalid_code"
    assert bad.json()["remaining_attempts"] == 2

    ok = client.post("/mfa/verify", json={"challenge_id": cid, "code": code}, headers=JSON_HEADERS)
    assert ok.status_code == 200
    assert client.get("/auth/me").json()["mfa_verified"] is True

    replay = client.post("/mfa/verify", json={"challenge_id": cid, "code": code}, headers=JSON_HEADERS)
    assert replay.status_code == 401
    assert replay.json()["code"] == "mfa_not_found"

    resp = client.post(
        "/compliance/validate",
        json={"action": "read_phi", "framework": "HIPAA", "data": {"encrypted": True}},
        headers=JSON_HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["compliant"] is True


def test_challenge_of_another_user_is_not_found(core, channel):
    app = create_app(core)
    with TestClient(app, base_url="https://testserver") as doctor, TestClient(app, base_url="https://testserver") as admin:
        _login(doctor, "code-doctor")
        _login(admin, "code-admin")
        cid, code = _mfa(doctor, channel)
        resp = admin.post("/mfa/verify", json={"challenge_id": cid, "code": code}, headers=JSON_HEADERS)
        assert resp.status_code == 401
        assert resp.json()["code"] == "mfa_not_found"
        assert core.mfa.get_challenge(cid) is not None
        [entry] = core.audit.entries(action="mfa_verification")
        assert entry.user_id == "u-admin"
        assert entry.outcome.value == "failure"
        assert entry.details["owner_mismatch"] is True
        assert entry.details["challenge_id"] == cid


def test_audit_and_metrics_need_permissions(client, core, channel):
    _login(client, "code-doctor")
    cid, code = _mfa(client, channel)
    client.post("/mfa/verify", json={"challenge_id": cid, "code": code}, headers=JSON_HEADERS)
    assert client.get("/audit/statistics").status_code == 403
    assert client.get("/metrics/security").status_code == 403
    denied = core.audit.entries(action="access_check")
    assert [e.details["permission"] for e in denied] == ["read:audit_logs", "admin:*"]


def test_admin_reads_statistics_integrity_and_metrics(client):
    _login(client, "code-admin")
    stats = client.get("/audit/statistics", params={"timeframe": "day"})
    assert stats.status_code == 200
    assert stats.json()["total_events"] > 0
    assert client.get("/audit/statistics", params={"timeframe": "fortnight"}).status_code == 400
    integrity = client.get("/audit/integrity").json()
    assert integrity["ok"] is True
    metrics = client.get("/metrics/security").json()
    assert metrics["active_sessions"] == 1
    assert metrics["known_users"] == 1
    assert metrics["idp_circuit"] == "CLOSED"


def test_biometric_register_and_verify(client):
    _login(client, "code-admin")
    reg = {"modality": "fingerprint", "template": "ridge-map-0001", "device_id": "dev-1"}
    assert client.post("/biometrics/register", json=reg, headers=JSON_HEADERS).json()["ok"] is True
    assert client.post("/biometrics/verify", json={**reg}, headers=JSON_HEADERS).status_code == 200
    miss = client.post(
        "/biometrics/verify",
        json={"modality": "fingerprint", "template": "zzzz-qqqq-9999", "device_id": "dev-1"},
        headers=JSON_HEADERS,
    )
    assert miss.status_code == 401
    assert miss.json()["code"] == "biometric_mismatch"


def test_invalid_body_is_400(client):
    _login(client, "code-admin")
    resp = client.post("/mfa/challenges", json={"method": "carrier-pigeon"}, headers=JSON_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_deeply_nested_json_is_rejected(client, core):
    nested = {}
    cur = nested
    for _ in range(12):
        cur["n"] = {}
        cur = cur["n"]
    resp = client.post("/compliance/validate", json=nested, headers=JSON_HEADERS)
    assert resp.status_code == 400
    assert core.audit.entries(action="request_rejected")[-1].outcome.value == "denied"


def test_logout_clears_session(client, core):
    _login(client, "code-admin")
    resp = client.post("/auth/logout", headers=JSON_HEADERS)
    assert resp.json() == {"ok": True, "message": "Signed out."}
    assert core.sessions.active_sessions() == []
    assert client.get("/auth/me").status_code == 401


def test_per_ip_rate_limit(core):
    core.cfg.web.per_ip_per_minute = 2
    with TestClient(create_app(core), base_url="https://testserver") as c:
        assert c.get("/health").status_code == 200
        assert c.get("/health").status_code == 200
        resp = c.get("/health")
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1


@pytest.mark.parametrize(
    "code,status",
    [("authentication_failed", 401), ("mfa_expired", 401), ("permission_denied", 403), ("rate_limited", 429), ("nope", 500)],
)
def test_status_mapping(code, status):
    assert status_for(code) == status
