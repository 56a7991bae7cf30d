"""
Tamper-evident audit trail: hash-chained entries with risk scores and
compliance framework tags, plus an optional durable JSONL sink.
"""

from warden.core.audit.log import AuditLog, timeframe_seconds
from warden.core.audit.models import (
    AuditEvent,
    AuditLogEntry,
    AuditOutcome,
    AuditStatistics,
    IntegrityReport,
)
from warden.core.audit.risk import risk_score
from warden.core.audit.store_jsonl import AuditJsonlSink

__all__ = [
    "AuditEvent",
    "AuditJsonlSink",
    "AuditLog",
    "AuditLogEntry",
    "AuditOutcome",
    "AuditStatistics",
    "IntegrityReport",
    "risk_score",
    "timeframe_seconds",
]
