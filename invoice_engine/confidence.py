from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal

from invoice_engine.normalization import (
    decimal_places,
    is_valid_email,
    parse_amount,
    parse_date,
    shift_years,
)
from schemas.extraction_schema import (
    COUNTED_FIELDS,
    REQUIRED_FIELDS,
    ConfidenceBreakdown,
    ExtractedInvoiceData,
    ValidationResult,
)

FIELD_WEIGHTS: dict[str, float] = {
    "invoice_number": 0.25,
    "total_amount": 0.25,
    "vendor_name": 0.20,
    "invoice_date": 0.15,
    "due_date": 0.10,
}
DEFAULT_FIELD_WEIGHT = 0.05
UNSOURCED_BASE_CONFIDENCE = 0.5

_EXACT_TOLERANCE = Decimal("0.01")
_ROUNDING_TOLERANCE = Decimal("0.10")

MAX_CONSISTENCY_BONUS = 0.20
MAX_VALIDATION_PENALTY = 0.30

_AMOUNT_FIELDS = frozenset({"total_amount", "subtotal_amount", "tax_amount"})
_DATE_FIELDS = frozenset({"invoice_date", "due_date"})
_SUPPORTING_FIELDS = ("invoice_date", "due_date", "vendor_address", "vendor_email")

_PREFIXED_ID = re.compile(r"^[A-Z]{2,4}-[0-9]{4,8}$")
_NUMERIC_ID = re.compile(r"^[0-9]{6,10}$")
_COMPACT_ID = re.compile(r"^[A-Z0-9]{6,12}$")
_ONLY_DIGITS_AND_PUNCT = re.compile(r"^[\d\W_]+$")


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


def enhance_field_confidence(field_name: str, value: str, base: float, *, today: date) -> float:
    """Adjust one extraction's confidence by how plausible its value looks for the field."""
    score = base
    if field_name == "invoice_number":
        if 4 <= len(value) <= 20:
            score += 0.1
        if _PREFIXED_ID.match(value):
            score += 0.2
        elif _NUMERIC_ID.match(value):
            score += 0.15
        elif _COMPACT_ID.match(value):
            score += 0.1
    elif field_name in _AMOUNT_FIELDS:
        amount = parse_amount(value)
        if amount is None:
            score -= 0.3
        else:
            if 0 < amount < 1_000_000:
                score += 0.15
            if decimal_places(value) == 2:
                score += 0.1
    elif field_name in _DATE_FIELDS:
        parsed = parse_date(value)
        if parsed is None:
            score -= 0.2
        elif shift_years(today, -2) < parsed < shift_years(today, 1):
            score += 0.2
    elif field_name == "vendor_name":
        if 3 <= len(value) <= 100:
            score += 0.1
        if not _ONLY_DIGITS_AND_PUNCT.match(value):
            score += 0.1
        if any(ch.isalpha() for ch in value):
            score += 0.1
    elif field_name == "vendor_email":
        score += 0.2 if is_valid_email(value) else -0.3
    return _clamp(score)


def _value_text(value: object) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def field_confidences(data: ExtractedInvoiceData, *, today: date) -> dict[str, float]:
    scores: dict[str, float] = {}
    for item in data.field_extractions:
        # provenance-only records (e.g. an unparseable amount) carry no value
        if getattr(data, item.field_name, None) is None:
            continue
        enhanced = enhance_field_confidence(item.field_name, item.value, item.confidence, today=today)
        scores[item.field_name] = max(enhanced, scores.get(item.field_name, 0.0))
    for name in REQUIRED_FIELDS:
        value = getattr(data, name)
        if value is not None and name not in scores:
            scores[name] = enhance_field_confidence(
                name, _value_text(value), UNSOURCED_BASE_CONFIDENCE, today=today
            )
    return scores


def consistency_bonus(data: ExtractedInvoiceData) -> float:
    bonus = 0.0
    if data.total_amount is not None and data.subtotal_amount is not None and data.tax_amount is not None:
        difference = abs(data.total_amount - (data.subtotal_amount + data.tax_amount))
        if difference <= _EXACT_TOLERANCE:
            bonus += 0.10
        elif difference <= _ROUNDING_TOLERANCE:
            bonus += 0.05
    if data.invoice_date is not None and data.due_date is not None and data.due_date > data.invoice_date:
        bonus += 0.05
    has_required = all(getattr(data, name) is not None for name in REQUIRED_FIELDS)
    supporting = sum(1 for name in _SUPPORTING_FIELDS if getattr(data, name) is not None)
    if has_required and supporting >= 2:
        bonus += 0.05
    return min(bonus, MAX_CONSISTENCY_BONUS)


def validation_penalty(validation: ValidationResult) -> float:
    penalty = 0.0
    for error in validation.errors:
        penalty += 0.15 if error.severity == "ERROR" else 0.05
    penalty += 0.02 * len(validation.warnings)
    return min(penalty, MAX_VALIDATION_PENALTY)


def completeness_bonus(data: ExtractedInvoiceData) -> float:
    ratio = data.extracted_field_count() / len(COUNTED_FIELDS)
    if ratio >= 0.8:
        return 0.10
    if ratio >= 0.6:
        return 0.05
    return 0.0


def calculate_confidence(
    data: ExtractedInvoiceData,
    validation: ValidationResult,
    *,
    today: date | None = None,
) -> ConfidenceBreakdown:
    reference_day = today or datetime.now(timezone.utc).date()
    scores = field_confidences(data, today=reference_day)

    weight_sum = 0.0
    weighted = 0.0
    for name, score in scores.items():
        weight = FIELD_WEIGHTS.get(name, DEFAULT_FIELD_WEIGHT)
        weighted += score * weight
        weight_sum += weight
    weighted_average = weighted / weight_sum if weight_sum else 0.0

    consistency = consistency_bonus(data)
    penalty = validation_penalty(validation)
    completeness = completeness_bonus(data)
    overall = _clamp(weighted_average + consistency - penalty + completeness)

    return ConfidenceBreakdown(
        field_confidences={name: round(score, 4) for name, score in scores.items()},
        weighted_average=round(weighted_average, 4),
        consistency_bonus=round(consistency, 4),
        validation_penalty=round(penalty, 4),
        completeness_bonus=round(completeness, 4),
        overall=round(overall, 4),
    )
