from __future__ import annotations

import threading
import time
from collections import Counter
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from warden.core.audit.hasher import GENESIS_HASH, chain_payload, compute_hash
from warden.core.audit.models import (
    AuditEvent,
    AuditLogEntry,
    AuditOutcome,
    AuditStatistics,
    IntegrityReport,
)
from warden.core.audit.risk import risk_score
from warden.core.audit.store_jsonl import AuditJsonlSink
from warden.core.logger import get_logger
from warden.core.redaction import redact
from warden.core.trace import current_trace_id


TIMEFRAMES: Dict[str, float] = {
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
}

Timeframe = Union[str, int, float, timedelta]


def timeframe_seconds(timeframe: Timeframe) -> float:
    if isinstance(timeframe, timedelta):
        return float(timeframe.total_seconds())
    if isinstance(timeframe, (int, float)) and not isinstance(timeframe, bool):
        return float(timeframe)
    key = str(timeframe).lower()
    if key not in TIMEFRAMES:
        raise ValueError(f"Unknown timeframe {timeframe!r}; expected one of {sorted(TIMEFRAMES)}")
    return TIMEFRAMES[key]


class AuditLog:
    """
    Append-only, hash-chained, risk-scored audit trail.

    Appends are serialized by one lock so entry order matches the order of the
    events they describe. `record` never raises: a failing audit write is
    logged locally and the caller's operation continues.
    """

    def __init__(
        self,
        *,
        frameworks: Iterable[str] = ("HIPAA", "SOC2", "CMMC"),
        enabled: bool = True,
        retention_days: int = 90,
        high_risk_threshold: int = 7,
        sink: Optional[AuditJsonlSink] = None,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.frameworks = [str(f) for f in frameworks]
        self.enabled = bool(enabled)
        self.retention_days = int(retention_days)
        self.high_risk_threshold = int(high_risk_threshold)
        self.sink = sink
        self.clock = clock
        self.logger = logger or get_logger()
        self._lock = threading.Lock()
        self._entries: List[AuditLogEntry] = []
        self._head = GENESIS_HASH
        if self.sink is not None:
            self._restore_from_sink()

    @classmethod
    def from_config(cls, audit_cfg: Any, compliance_cfg: Any, *, clock: Callable[[], float] = time.time, logger: Any = None) -> "AuditLog":
        sink = AuditJsonlSink(path=audit_cfg.path_jsonl) if audit_cfg.path_jsonl else None
        return cls(
            frameworks=compliance_cfg.frameworks,
            enabled=audit_cfg.enabled,
            retention_days=audit_cfg.retention_days,
            high_risk_threshold=audit_cfg.high_risk_threshold,
            sink=sink,
            clock=clock,
            logger=logger,
        )

    def _restore_from_sink(self) -> None:
        for raw in self.sink.read_all():
            try:
                entry = AuditLogEntry.model_validate(raw)
            except ValidationError:
                self.logger.warning("Skipping unreadable audit record during restore.")
                continue
            self._entries.append(entry)
            self._head = entry.hash or self._head
        marker = self.sink.read_head()
        if marker["head_hash"] != self._head or marker["records"] != len(self._entries):
            self.logger.warning(
                f"Audit log does not match its head marker (records={len(self._entries)} expected={marker['records']}); it may have been truncated or edited."
            )

    # ---- append ----
    def record(self, event: AuditEvent) -> Optional[AuditLogEntry]:
        if not self.enabled:
            return None
        try:
            with self._lock:
                entry = self._build_entry_locked(event)
                self._entries.append(entry)
                self._head = entry.hash
                self._persist_locked(entry)
            return entry
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Audit record failed for action={getattr(event, 'action', '?')}: {e.__class__.__name__}")
            return None

    def log(
        self,
        action: str,
        resource: str,
        outcome: Union[AuditOutcome, str],
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        try:
            event = AuditEvent(
                action=action,
                resource=resource,
                outcome=outcome,
                user_id=user_id,
                session_id=session_id,
                ip_address=ip_address,
                details=details or {},
            )
        except ValidationError as e:
            self.logger.error(f"Audit event rejected for action={action!r}: {len(e.errors())} validation error(s)")
            return None
        return self.record(event)

    def _build_entry_locked(self, event: AuditEvent) -> AuditLogEntry:
        draft = AuditLogEntry(
            timestamp=float(self.clock()),
            trace_id=current_trace_id(),
            user_id=event.user_id,
            session_id=event.session_id,
            ip_address=event.ip_address,
            action=event.action,
            resource=event.resource,
            outcome=event.outcome,
            details=redact(event.details or {}),
            risk_score=risk_score(event.action, event.resource, event.outcome),
            compliance_frameworks=list(self.frameworks),
        )
        return self._chain(draft, self._head)

    @staticmethod
    def _chain(entry: AuditLogEntry, prev_hash: str) -> AuditLogEntry:
        payload = chain_payload(entry.model_dump(mode="json"))
        return entry.model_copy(update={"prev_hash": prev_hash, "hash": compute_hash(prev_hash, payload)})

    def _persist_locked(self, entry: AuditLogEntry) -> None:
        if self.sink is None:
            return
        try:
            self.sink.append(entry.model_dump(mode="json"))
        except OSError as e:
            self.logger.error(f"Audit sink append failed: {e}")

    # ---- queries ----
    def entries(
        self,
        *,
        since: Optional[float] = None,
        until: Optional[float] = None,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        outcome: Optional[Union[AuditOutcome, str]] = None,
    ) -> List[AuditLogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        out: List[AuditLogEntry] = []
        for e in snapshot:
            if since is not None and e.timestamp < float(since):
                continue
            if until is not None and e.timestamp > float(until):
                continue
            if action is not None and e.action != action:
                continue
            if user_id is not None and e.user_id != user_id:
                continue
            if outcome is not None and e.outcome != AuditOutcome(outcome):
                continue
            out.append(e)
        return out

    def count_failures(
        self,
        *,
        window_seconds: float,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        detail_match: Optional[Dict[str, Any]] = None,
    ) -> int:
        since = float(self.clock()) - float(window_seconds)
        n = 0
        for e in self.entries(since=since, action=action, user_id=user_id):
            if e.outcome == AuditOutcome.success:
                continue
            if detail_match and any(e.details.get(k) != v for k, v in detail_match.items()):
                continue
            n += 1
        return n

    def statistics(self, timeframe: Timeframe = "day") -> AuditStatistics:
        window = timeframe_seconds(timeframe)
        recent = self.entries(since=float(self.clock()) - window)
        total = len(recent)
        failures = sum(1 for e in recent if e.outcome == AuditOutcome.failure)
        high_risk = sum(1 for e in recent if e.risk_score >= self.high_risk_threshold)
        top = Counter(e.action for e in recent)
        per_framework = {
            fw: sum(1 for e in recent if fw in e.compliance_frameworks and e.outcome == AuditOutcome.success)
            for fw in self.frameworks
        }
        return AuditStatistics(
            timeframe_seconds=window,
            total_events=total,
            failure_rate=(failures / total) if total else 0.0,
            high_risk_event_count=high_risk,
            top_actions=dict(top.most_common()),
            per_framework_success_count=per_framework,
        )

    # ---- retention / integrity ----
    def cleanup(self, retention_days: Optional[int] = None) -> int:
        """
        Drop entries older than the retention horizon and rechain the rest.
        Irreversible. Writes one `audit_cleanup` summary entry.
        """
        days = int(self.retention_days if retention_days is None else retention_days)
        cutoff = float(self.clock()) - days * 24 * 60 * 60
        with self._lock:
            previous_head = self._head
            keep = [e for e in self._entries if e.timestamp >= cutoff]
            removed = len(self._entries) - len(keep)
            rechained: List[AuditLogEntry] = []
            head = GENESIS_HASH
            for e in keep:
                ce = self._chain(e, head)
                rechained.append(ce)
                head = ce.hash
            self._entries = rechained
            self._head = head
            if self.sink is not None:
                try:
                    self.sink.rewrite(e.model_dump(mode="json") for e in rechained)
                except OSError as e:
                    self.logger.error(f"Audit sink rewrite failed: {e}")
        self.log(
            "audit_cleanup",
            "audit_logs",
            AuditOutcome.success,
            details={"removed": removed, "retention_days": days, "previous_head": previous_head},
        )
        return removed

    def verify_integrity(self) -> IntegrityReport:
        with self._lock:
            snapshot = list(self._entries)
            head = self._head
        prev = GENESIS_HASH
        for idx, e in enumerate(snapshot):
            if e.prev_hash != prev:
                return IntegrityReport(ok=False, checked=idx, broken_at_index=idx, message="prev_hash mismatch", head_hash=head)
            expected = compute_hash(e.prev_hash, chain_payload(e.model_dump(mode="json")))
            if expected != e.hash:
                return IntegrityReport(ok=False, checked=idx, broken_at_index=idx, message="hash mismatch", head_hash=head)
            prev = e.hash
        return IntegrityReport(ok=True, checked=len(snapshot), message="ok", head_hash=head)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
