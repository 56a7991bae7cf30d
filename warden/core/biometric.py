from __future__ import annotations

import difflib
import time
from typing import Any, Callable, List, Optional, Tuple, Union

from warden.core.classification import DataClassification
from warden.core.errors import BiometricMismatchError, EncryptionError
from warden.core.identity.models import BiometricModality, BiometricRecord
from warden.core.logger import get_logger
from warden.core.store import InMemoryStore, KeyValueStore

SimilarityFn = Callable[[str, str], float]

DEFAULT_THRESHOLD = 0.85


def sequence_similarity(stored: str, presented: str) -> float:
    """Placeholder matcher: character sequence ratio in [0, 1]."""
    return difflib.SequenceMatcher(None, stored, presented).ratio()


class BiometricVerifier:
    """
    Enrolment and matching of biometric templates.

    Templates are stored encrypted and records are append-only: re-enrolling a
    device+modality adds a newer record which wins on lookup. The matcher is
    pluggable; only the threshold contract is fixed here.
    """

    def __init__(
        self,
        *,
        encryption: Any,
        audit: Any,
        sessions: Any,
        similarity: SimilarityFn = sequence_similarity,
        threshold: float = DEFAULT_THRESHOLD,
        default_confidence: float = 0.95,
        records: Optional[KeyValueStore[Tuple[BiometricRecord, ...]]] = None,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ):
        self.encryption = encryption
        self.audit = audit
        self.sessions = sessions
        self.similarity = similarity
        self.threshold = float(threshold)
        self.default_confidence = float(default_confidence)
        self.records: KeyValueStore[Tuple[BiometricRecord, ...]] = records if records is not None else InMemoryStore()
        self.clock = clock
        self.logger = logger or get_logger()

    def register(
        self,
        user_id: str,
        modality: Union[BiometricModality, str],
        template: str,
        device_id: str,
        confidence: Optional[float] = None,
    ) -> bool:
        modality = BiometricModality(modality)
        details = {"modality": modality.value, "device_id": device_id}
        try:
            sealed = self.encryption.encrypt(template, DataClassification.CONFIDENTIAL)
        except EncryptionError:
            self.audit.log("biometric_registration", "biometric", "failure", user_id=user_id, details={**details, "reason": "encryption_failed"})
            return False
        record = BiometricRecord(
            user_id=user_id,
            modality=modality,
            template=sealed,
            confidence=self.default_confidence if confidence is None else float(confidence),
            device_id=device_id,
            registered_at=float(self.clock()),
        )
        self.records.update(user_id, lambda cur: (cur or ()) + (record,))
        self.audit.log("biometric_registration", "biometric", "success", user_id=user_id, details={**details, "record_id": record.record_id})
        return True

    def records_for(self, user_id: str) -> List[BiometricRecord]:
        return list(self.records.get(user_id) or ())

    def _latest(self, user_id: str, modality: BiometricModality, device_id: str) -> Optional[BiometricRecord]:
        matches = [r for r in self.records_for(user_id) if r.modality == modality and r.device_id == device_id]
        if not matches:
            return None
        # stable on ties: later append wins
        return max(enumerate(matches), key=lambda p: (p[1].registered_at, p[0]))[1]

    def _match(self, user_id: str, modality: BiometricModality, template: str, device_id: str) -> Tuple[bool, str, Optional[float]]:
        record = self._latest(user_id, modality, device_id)
        if record is None:
            return False, "not_registered", None
        try:
            stored = self.encryption.decrypt(record.template)
        except EncryptionError:
            return False, "template_unreadable", None
        try:
            score = float(self.similarity(stored, template))
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Biometric similarity function failed: {e.__class__.__name__}")
            return False, "matcher_error", None
        if score >= self.threshold:
            return True, "match", score
        return False, "mismatch", score

    def _verify(self, user_id: str, modality: Union[BiometricModality, str], template: str, device_id: str) -> Tuple[bool, str]:
        modality = BiometricModality(modality)
        ok, reason, score = self._match(user_id, modality, template, device_id)
        if ok:
            self.sessions.mark_biometric_verified(user_id)
        self.audit.log(
            "biometric_verification",
            "biometric",
            "success" if ok else "failure",
            user_id=user_id,
            details={
                "modality": modality.value,
                "device_id": device_id,
                "reason": reason,
                "similarity": round(score, 4) if score is not None else None,
                "threshold": self.threshold,
            },
        )
        return ok, reason

    def verify(self, user_id: str, modality: Union[BiometricModality, str], template: str, device_id: str) -> bool:
        return self._verify(user_id, modality, template, device_id)[0]

    def verify_or_raise(self, user_id: str, modality: Union[BiometricModality, str], template: str, device_id: str) -> None:
        ok, reason = self._verify(user_id, modality, template, device_id)
        if not ok:
            raise BiometricMismatchError(reason=reason)

    def enrolled_users(self) -> List[str]:
        return [uid for uid, recs in self.records.items() if recs]
