from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, List, Pattern, Tuple


class DataClassification(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"
    PHI = "phi"
    PII = "pii"


# Checked in order; first match wins.
_PATTERNS: List[Tuple[DataClassification, List[Pattern[str]]]] = [
    (
        DataClassification.PHI,
        [
            re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
            re.compile(r"\b\d{10}\b"),  # phone / MRN-like
            re.compile(r"mrn|medical record|patient id|diagnosis", re.IGNORECASE),
        ],
    ),
    (
        DataClassification.PII,
        [
            re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
            re.compile(r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b"),  # card number
            re.compile(r"\bdob\b|date of birth|birthday", re.IGNORECASE),
        ],
    ),
    (
        DataClassification.RESTRICTED,
        [
            re.compile(r"\bcui\b|controlled unclassified|\bitar\b|export controlled", re.IGNORECASE),
        ],
    ),
    (
        DataClassification.CONFIDENTIAL,
        [
            re.compile(r"password|secret|\bkey\b|token", re.IGNORECASE),
            re.compile(r"confidential|proprietary|internal use only", re.IGNORECASE),
        ],
    ),
]


def classify_data(data: Any) -> DataClassification:
    """
    Regex-based sensitivity classification. Non-string input is classified on
    its JSON rendering.
    """
    if isinstance(data, str):
        text = data
    else:
        try:
            text = json.dumps(data, ensure_ascii=False, sort_keys=True, default=str)
        except (TypeError, ValueError):
            text = str(data)
    for classification, patterns in _PATTERNS:
        if any(p.search(text) for p in patterns):
            return classification
    return DataClassification.INTERNAL
