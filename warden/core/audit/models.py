from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditOutcome(str, Enum):
    success = "success"
    failure = "failure"
    denied = "denied"


class AuditEvent(BaseModel):
    """What a caller reports; `AuditLog.record` turns it into an entry."""

    model_config = ConfigDict(extra="forbid")

    action: str = Field(min_length=1, max_length=128)
    resource: str = Field(default="", max_length=256)
    outcome: AuditOutcome
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    action: str
    resource: str = ""
    outcome: AuditOutcome
    details: Dict[str, Any] = Field(default_factory=dict)
    risk_score: int = Field(default=0, ge=0, le=10)
    compliance_frameworks: List[str] = Field(default_factory=list)
    prev_hash: str = ""
    hash: str = ""


class AuditStatistics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeframe_seconds: float
    total_events: int
    failure_rate: float
    high_risk_event_count: int
    top_actions: Dict[str, int] = Field(default_factory=dict)
    per_framework_success_count: Dict[str, int] = Field(default_factory=dict)


class IntegrityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    checked: int
    broken_at_index: Optional[int] = None
    message: str = ""
    head_hash: Optional[str] = None
