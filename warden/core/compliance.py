from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from warden.core.classification import DataClassification, classify_data
from warden.core.config.models import KNOWN_FRAMEWORKS


@dataclass(frozen=True)
class ComplianceCheck:
    """Inputs a rule predicate sees. `data` is the caller's payload as given."""

    action: str
    data: Any
    classification: DataClassification
    audit_enabled: bool

    def flag(self, name: str) -> bool:
        if isinstance(self.data, Mapping):
            return bool(self.data.get(name))
        return False


@dataclass(frozen=True)
class ComplianceRule:
    framework: str
    rule_id: str
    # returns True when the check passes
    predicate: Callable[[ComplianceCheck], bool]
    message: str
    recommendation: Optional[str] = None
    severity: str = "high"


class ComplianceViolation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    framework: str
    rule_id: str
    message: str
    severity: str = "high"


class ComplianceResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    framework: str
    compliant: bool
    violations: List[ComplianceViolation] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


DEFAULT_RULES: List[ComplianceRule] = [
    ComplianceRule(
        framework="HIPAA",
        rule_id="audit_logging",
        predicate=lambda c: c.audit_enabled,
        message="HIPAA requires comprehensive audit logging.",
        recommendation="Enable audit logging.",
        severity="critical",
    ),
    ComplianceRule(
        framework="HIPAA",
        rule_id="phi_encryption",
        predicate=lambda c: c.classification != DataClassification.PHI or c.flag("encrypted"),
        message="PHI must be encrypted in transit and at rest.",
        recommendation="Implement end-to-end encryption for PHI.",
    ),
    ComplianceRule(
        framework="SOC2",
        rule_id="admin_mfa",
        predicate=lambda c: "admin" not in c.action or c.flag("mfa_verified"),
        message="SOC2 Type II requires MFA for administrative actions.",
        recommendation="Implement multi-factor authentication.",
    ),
    ComplianceRule(
        framework="CMMC",
        rule_id="cui_access_control",
        predicate=lambda c: c.classification != DataClassification.RESTRICTED or c.flag("access_control_verified"),
        message="CMMC requires strict access controls for CUI.",
        recommendation="Implement role-based access control (RBAC).",
    ),
    ComplianceRule(
        framework="GDPR",
        rule_id="pii_lawful_basis",
        predicate=lambda c: c.classification != DataClassification.PII or c.flag("lawful_basis"),
        message="GDPR requires a recorded lawful basis for processing personal data.",
        recommendation="Record consent or another lawful basis with the request.",
        severity="medium",
    ),
]


class ComplianceValidator:
    """
    Advisory, rule-driven compliance checks. Results are data; nothing here
    raises on a violation. Each validation writes one `compliance_check` entry.
    """

    def __init__(self, *, audit: Any, audit_enabled: Optional[bool] = None, rules: Optional[List[ComplianceRule]] = None, logger: Any = None):
        self.audit = audit
        self._audit_enabled = audit_enabled
        self.logger = logger
        self._lock = threading.Lock()
        self._rules: Dict[str, List[ComplianceRule]] = {}
        for r in DEFAULT_RULES if rules is None else rules:
            self.register_rule(r)

    @property
    def audit_enabled(self) -> bool:
        if self._audit_enabled is not None:
            return bool(self._audit_enabled)
        return bool(getattr(self.audit, "enabled", False))

    def register_rule(self, rule: ComplianceRule) -> None:
        fw = rule.framework.upper()
        with self._lock:
            self._rules.setdefault(fw, []).append(rule)

    def frameworks(self) -> List[str]:
        with self._lock:
            return sorted(set(self._rules) | KNOWN_FRAMEWORKS)

    def rules_for(self, framework: str) -> List[ComplianceRule]:
        with self._lock:
            return list(self._rules.get(str(framework).upper(), []))

    def validate(self, action: str, data: Any, framework: str) -> ComplianceResult:
        fw = str(framework or "").upper()
        violations: List[ComplianceViolation] = []
        recommendations: List[str] = []

        if fw not in KNOWN_FRAMEWORKS and fw not in self._rules:
            violations.append(ComplianceViolation(framework=fw, rule_id="unknown_framework", message=f"Unknown compliance framework: {framework!r}."))
        else:
            check = ComplianceCheck(action=str(action), data=data, classification=classify_data(data), audit_enabled=self.audit_enabled)
            for rule in self.rules_for(fw):
                try:
                    passed = bool(rule.predicate(check))
                except Exception as e:  # noqa: BLE001
                    if self.logger is not None:
                        self.logger.warning(f"Compliance rule {fw}/{rule.rule_id} errored: {e.__class__.__name__}")
                    passed = False
                if passed:
                    continue
                violations.append(ComplianceViolation(framework=fw, rule_id=rule.rule_id, message=rule.message, severity=rule.severity))
                if rule.recommendation:
                    recommendations.append(rule.recommendation)

        result = ComplianceResult(framework=fw, compliant=not violations, violations=violations, recommendations=recommendations)
        self.audit.log(
            "compliance_check",
            f"compliance:{fw or 'unknown'}",
            "success" if result.compliant else "failure",
            details={"action": str(action), "framework": fw, "violations": [v.rule_id for v in violations]},
        )
        return result
