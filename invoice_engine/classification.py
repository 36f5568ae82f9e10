from __future__ import annotations

from dataclasses import dataclass

from schemas.extraction_schema import ExtractionStatus, ProcessingRecommendation, ValidationResult


@dataclass(frozen=True)
class ClassificationDecision:
    status: ExtractionStatus
    recommendation: ProcessingRecommendation


def decide_extraction_status(field_count: int, overall_confidence: float) -> ExtractionStatus:
    if field_count == 0:
        return "NO_DATA_EXTRACTED"
    if field_count >= 6 and overall_confidence >= 0.8:
        return "EXTRACTION_COMPLETE"
    if field_count >= 3 and overall_confidence >= 0.6:
        return "PARTIAL_EXTRACTION"
    return "LOW_CONFIDENCE"


def decide_recommendation(overall_confidence: float, validation: ValidationResult) -> ProcessingRecommendation:
    if overall_confidence >= 0.9 and validation.is_valid:
        return "AUTO_APPROVE"
    if overall_confidence >= 0.7 and (validation.is_valid or validation.has_only_warnings()):
        return "REVIEW_RECOMMENDED"
    if overall_confidence >= 0.5:
        return "MANUAL_REVIEW"
    return "MANUAL_PROCESSING"


def classify(field_count: int, overall_confidence: float, validation: ValidationResult) -> ClassificationDecision:
    return ClassificationDecision(
        status=decide_extraction_status(field_count, overall_confidence),
        recommendation=decide_recommendation(overall_confidence, validation),
    )
