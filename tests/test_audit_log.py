from __future__ import annotations

import json
from datetime import timedelta

import pytest

from warden.core.audit import AuditJsonlSink, AuditLog, AuditOutcome, risk_score, timeframe_seconds
from warden.core.audit.hasher import GENESIS_HASH
from warden.core.trace import bound_trace

DAY = 24 * 60 * 60


def test_entries_are_hash_chained(audit):
    a = audit.log("login", "session", "success", user_id="u1")
    b = audit.log("data_access", "records", "success", user_id="u1")
    assert a.prev_hash == GENESIS_HASH
    assert b.prev_hash == a.hash
    report = audit.verify_integrity()
    assert report.ok is True
    assert report.checked == 2
    assert report.head_hash == b.hash


def test_tampering_breaks_integrity(audit):
    audit.log("login", "session", "success")
    audit.log("data_access", "records", "success")
    forged = audit._entries[0].model_copy(update={"outcome": AuditOutcome.failure})
    audit._entries[0] = forged
    report = audit.verify_integrity()
    assert report.ok is False
    assert report.broken_at_index == 0


def test_entry_carries_frameworks_trace_and_redacted_details(audit):
    with bound_trace("trace-123"):
        e = audit.log("oauth_login", "authentication", "failure", details={"access_token": "abc", "reason": "x"})
    assert e.trace_id == "trace-123"
    assert e.compliance_frameworks == ["HIPAA", "SOC2", "CMMC"]
    assert e.details["access_token"] == "***REDACTED***"
    assert e.details["reason"] == "x"


@pytest.mark.parametrize(
    "action,resource,outcome",
    [
        ("security_violation", "admin/phi", "denied"),
        ("unknown_action", "", "success"),
        ("login", "patient_records", "failure"),
        ("data_modification", "security_settings", "denied"),
    ],
)
def test_risk_score_is_an_int_in_range(audit, action, resource, outcome):
    e = audit.log(action, resource, outcome)
    assert isinstance(e.risk_score, int)
    assert 0 <= e.risk_score <= 10


def test_risk_score_components():
    assert risk_score("login", "session", "success") == 2
    assert risk_score("login", "session", "failure") == 5
    assert risk_score("data_access", "patient_records", "success") == 7
    assert risk_score("admin_action", "security", "denied") == 10
    assert risk_score("mystery", "", "success") == 1
    # not in the table, so it scores like any unlisted action
    assert risk_score("oauth_login", "authentication", "success") == 1


def test_cleanup_respects_retention(audit, clock):
    old = audit.log("login", "session", "success", user_id="old")
    clock.advance(2 * DAY)
    kept = audit.log("login", "session", "success", user_id="kept")
    clock.advance(89 * DAY)
    # old is now 91 days old, kept is 89 days old
    removed = audit.cleanup(90)
    assert removed == 1
    users = [e.user_id for e in audit.entries()]
    assert "old" not in users
    assert "kept" in users
    assert old.entry_id not in {e.entry_id for e in audit.entries()}
    assert kept.entry_id in {e.entry_id for e in audit.entries()}
    summary = audit.entries(action="audit_cleanup")[-1]
    assert summary.details["removed"] == 1
    assert audit.verify_integrity().ok is True


def test_statistics(audit, clock):
    audit.log("login", "session", "success")
    audit.log("login", "session", "failure")
    audit.log("security_violation", "admin", "denied")
    clock.advance(2 * DAY)
    audit.log("data_access", "records", "success")
    day = audit.statistics("day")
    assert day.total_events == 1
    week = audit.statistics("week")
    assert week.total_events == 4
    assert week.failure_rate == pytest.approx(0.25)
    assert week.high_risk_event_count == 1
    assert week.top_actions["login"] == 2
    assert week.per_framework_success_count["HIPAA"] == 2
    assert audit.statistics(timedelta(days=7)).total_events == 4


def test_statistics_is_read_only(audit):
    audit.log("login", "session", "success")
    before = len(audit)
    audit.statistics("month")
    assert len(audit) == before


def test_timeframe_seconds():
    assert timeframe_seconds("hour") == 3600
    assert timeframe_seconds(30) == 30.0
    with pytest.raises(ValueError):
        timeframe_seconds("fortnight")


def test_disabled_audit_records_nothing(clock):
    log = AuditLog(enabled=False, clock=clock)
    assert log.log("login", "session", "success") is None
    assert len(log) == 0


def test_invalid_event_is_not_raised(audit):
    assert audit.log("", "session", "success") is None
    assert audit.log("login", "session", "maybe") is None


def test_record_never_raises_when_sink_breaks(tmp_path, clock):
    class BrokenSink(AuditJsonlSink):
        def append(self, record):
            raise OSError("disk full")

    log = AuditLog(sink=BrokenSink(path=str(tmp_path / "a.jsonl")), clock=clock)
    e = log.log("login", "session", "success")
    assert e is not None
    assert len(log) == 1


def test_count_failures_window(audit, clock):
    audit.log("mfa_verification", "mfa", "failure", user_id="u1")
    audit.log("mfa_verification", "mfa", "success", user_id="u1")
    clock.advance(3600)
    audit.log("mfa_verification", "mfa", "failure", user_id="u1")
    audit.log("mfa_verification", "mfa", "failure", user_id="u2")
    assert audit.count_failures(window_seconds=600, action="mfa_verification", user_id="u1") == 1
    assert audit.count_failures(window_seconds=7200, action="mfa_verification", user_id="u1") == 2


def test_jsonl_sink_persists_and_restores(tmp_path, clock):
    path = str(tmp_path / "audit" / "audit.jsonl")
    log = AuditLog(sink=AuditJsonlSink(path=path), clock=clock)
    log.log("login", "session", "success", user_id="u1")
    last = log.log("logout", "session", "success", user_id="u1")

    with open(path, "r", encoding="utf-8") as f:
        lines = [json.loads(line) for line in f if line.strip()]
    assert [r["action"] for r in lines] == ["login", "logout"]
    assert AuditJsonlSink(path=path).read_head_hash() == last.hash

    restored = AuditLog(sink=AuditJsonlSink(path=path), clock=clock)
    assert len(restored) == 2
    nxt = restored.log("login", "session", "success")
    assert nxt.prev_hash == last.hash
    assert restored.verify_integrity().ok is True


def test_cleanup_rewrites_sink(tmp_path, clock):
    path = str(tmp_path / "audit.jsonl")
    log = AuditLog(sink=AuditJsonlSink(path=path), clock=clock)
    log.log("login", "session", "success", user_id="old")
    clock.advance(100 * DAY)
    log.log("login", "session", "success", user_id="new")
    log.cleanup(90)
    restored = AuditLog(sink=AuditJsonlSink(path=path), clock=clock)
    assert [e.user_id for e in restored.entries(action="login")] == ["new"]
    assert restored.verify_integrity().ok is True


def test_truncated_sink_is_reported_on_restore(tmp_path, clock):
    class Notes:
        def __init__(self):
            self.warnings = []

        def warning(self, msg):
            self.warnings.append(msg)

    path = str(tmp_path / "audit.jsonl")
    log = AuditLog(sink=AuditJsonlSink(path=path), clock=clock)
    for i in range(3):
        log.log("login", "session", "success", user_id=f"u{i}")
    with open(path, "r", encoding="utf-8") as f:
        lines = f.readlines()
    with open(path, "w", encoding="utf-8") as f:
        f.writelines(lines[:2])

    notes = Notes()
    restored = AuditLog(sink=AuditJsonlSink(path=path), clock=clock, logger=notes)
    assert len(restored) == 2
    assert any("truncated" in w for w in notes.warnings)
