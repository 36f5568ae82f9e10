from __future__ import annotations

from datetime import datetime, timezone

import pytest

from invoice_engine.classification import classify, decide_extraction_status, decide_recommendation
from schemas.extraction_schema import ValidationErrorItem, ValidationResult, ValidationWarningItem

NOW = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)

CLEAN = ValidationResult(is_valid=True, validated_at=NOW)
WARNINGS_ONLY = ValidationResult(
    is_valid=True,
    warnings=(ValidationWarningItem(field="currency", warning_type="UNUSUAL_CURRENCY", message="odd"),),
    validated_at=NOW,
)
WITH_ERRORS = ValidationResult(
    is_valid=False,
    errors=(ValidationErrorItem(field="invoice_number", error_type="MISSING_REQUIRED", message="missing"),),
    validated_at=NOW,
)


@pytest.mark.parametrize(
    ("field_count", "overall", "expected"),
    [
        (0, 0.99, "NO_DATA_EXTRACTED"),
        (6, 0.8, "EXTRACTION_COMPLETE"),
        (9, 0.95, "EXTRACTION_COMPLETE"),
        (5, 0.95, "PARTIAL_EXTRACTION"),
        (6, 0.79, "PARTIAL_EXTRACTION"),
        (3, 0.6, "PARTIAL_EXTRACTION"),
        (2, 0.9, "LOW_CONFIDENCE"),
        (4, 0.59, "LOW_CONFIDENCE"),
    ],
)
def test_extraction_status_thresholds(field_count: int, overall: float, expected: str) -> None:
    assert decide_extraction_status(field_count, overall) == expected


@pytest.mark.parametrize(
    ("overall", "validation", "expected"),
    [
        (0.9, CLEAN, "AUTO_APPROVE"),
        (0.95, WARNINGS_ONLY, "AUTO_APPROVE"),
        (0.95, WITH_ERRORS, "MANUAL_REVIEW"),
        (0.89, CLEAN, "REVIEW_RECOMMENDED"),
        (0.7, WARNINGS_ONLY, "REVIEW_RECOMMENDED"),
        (0.69, CLEAN, "MANUAL_REVIEW"),
        (0.5, WITH_ERRORS, "MANUAL_REVIEW"),
        (0.49, CLEAN, "MANUAL_PROCESSING"),
    ],
)
def test_recommendation_thresholds(overall: float, validation: ValidationResult, expected: str) -> None:
    assert decide_recommendation(overall, validation) == expected


def test_invalid_result_never_auto_approves() -> None:
    decision = classify(9, 1.0, WITH_ERRORS)
    assert decision.status == "EXTRACTION_COMPLETE"
    assert decision.recommendation != "AUTO_APPROVE"
