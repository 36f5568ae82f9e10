from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PatternCategory(str, Enum):
    INVOICE_NUMBER = "INVOICE_NUMBER"
    AMOUNT = "AMOUNT"
    SUBTOTAL_AMOUNT = "SUBTOTAL_AMOUNT"
    TAX_AMOUNT = "TAX_AMOUNT"
    INVOICE_DATE = "INVOICE_DATE"
    DUE_DATE = "DUE_DATE"
    VENDOR = "VENDOR"
    CUSTOMER = "CUSTOMER"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    ADDRESS = "ADDRESS"
    CURRENCY = "CURRENCY"
    PAYMENT_TERMS = "PAYMENT_TERMS"


ExtractionMethod = Literal["pattern-match", "keyword-context", "email-enhancement"]
ExtractionStatus = Literal[
    "EXTRACTION_COMPLETE",
    "PARTIAL_EXTRACTION",
    "LOW_CONFIDENCE",
    "NO_DATA_EXTRACTED",
    "FAILED",
]
ProcessingRecommendation = Literal[
    "AUTO_APPROVE",
    "REVIEW_RECOMMENDED",
    "MANUAL_REVIEW",
    "MANUAL_PROCESSING",
]

REQUIRED_FIELDS: tuple[str, ...] = ("invoice_number", "total_amount", "vendor_name")
COUNTED_FIELDS: tuple[str, ...] = (
    "invoice_number",
    "total_amount",
    "subtotal_amount",
    "tax_amount",
    "invoice_date",
    "due_date",
    "vendor_name",
    "vendor_address",
    "vendor_email",
)


class ExtractionRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    category: PatternCategory
    regex: str
    priority: int = 50
    confidence_weight: float = 0.8
    is_active: bool = True
    capture_group: int = 1
    flags: str | None = None
    date_format: str | None = None
    validation_regex: str | None = None
    description: str | None = None
    notes: str | None = None
    created_by: str = "ADMIN"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def effective_weight(self) -> float:
        return max(0.1, min(self.confidence_weight, 1.0))


class RuleDraft(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    category: PatternCategory
    regex: str = Field(min_length=1)
    priority: int = Field(default=50, ge=1, le=1000)
    confidence_weight: float = Field(default=0.8, ge=0, le=1)
    is_active: bool = True
    capture_group: int = Field(default=1, ge=0)
    flags: str | None = None
    date_format: str | None = None
    validation_regex: str | None = None
    description: str | None = None
    notes: str | None = None
    created_by: str = "ADMIN"

    @field_validator("name", "regex")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class FieldExtraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    value: str
    confidence: float = Field(ge=0, le=1)
    method: ExtractionMethod
    rule_id: int | None = None
    rule_name: str | None = None
    category: PatternCategory | None = None
    source_text: str | None = None
    line_number: int | None = None


class ExtractedInvoiceData(BaseModel):
    model_config = ConfigDict(frozen=True)

    invoice_number: str | None = None
    vendor_name: str | None = None
    vendor_address: str | None = None
    vendor_email: str | None = None
    vendor_phone: str | None = None
    customer_name: str | None = None
    payment_terms: str | None = None
    total_amount: Decimal | None = None
    subtotal_amount: Decimal | None = None
    tax_amount: Decimal | None = None
    currency: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    field_extractions: tuple[FieldExtraction, ...] = ()
    extracted_at: datetime

    def extracted_field_count(self) -> int:
        return sum(1 for name in COUNTED_FIELDS if getattr(self, name) is not None)

    def confidence_for(self, field_name: str) -> float:
        scores = [fe.confidence for fe in self.field_extractions if fe.field_name == field_name]
        return max(scores) if scores else 0.0


class ValidationErrorItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    error_type: str
    message: str
    severity: Literal["ERROR", "WARNING"] = "ERROR"


class ValidationWarningItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    warning_type: str
    message: str
    suggested_value: str | None = None


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: tuple[ValidationErrorItem, ...] = ()
    warnings: tuple[ValidationWarningItem, ...] = ()
    validated_at: datetime

    def has_only_warnings(self) -> bool:
        return not self.errors and bool(self.warnings)


class ConfidenceBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_confidences: dict[str, float] = Field(default_factory=dict)
    weighted_average: float = 0.0
    consistency_bonus: float = 0.0
    validation_penalty: float = 0.0
    completeness_bonus: float = 0.0
    overall: float = Field(default=0.0, ge=0, le=1)


class ExtractionResultEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    extraction_id: str
    status: ExtractionStatus
    recommendation: ProcessingRecommendation
    overall_confidence: float = Field(ge=0, le=1)
    state: str
    state_history: tuple[str, ...] = ()
    data: ExtractedInvoiceData | None = None
    validation: ValidationResult | None = None
    confidence: ConfidenceBreakdown | None = None
    started_at: datetime
    processing_time_ms: int = Field(ge=0)
    input_text_length: int = Field(ge=0)
    email_subject: str | None = None
    sender_email: str | None = None
    error: str | None = None
    error_code: str | None = None


class PatternTestRequest(BaseModel):
    regex: str = Field(min_length=1)
    sample_text: str
    flags: str | None = None


class PatternTestResult(BaseModel):
    is_valid: bool
    matches: bool = False
    matched_text: str | None = None
    captured_value: str | None = None
    capture_groups: list[str | None] = Field(default_factory=list)
    start: int | None = None
    end: int | None = None
    error_message: str | None = None


class ToggleRequest(BaseModel):
    is_active: bool


class ExtractRequest(BaseModel):
    raw_text: str
    email_subject: str | None = None
    sender_email: str | None = None


class CategoryStatistics(BaseModel):
    category: PatternCategory
    total: int
    active: int
    golden: int
    average_priority: float | None = None
    average_confidence_weight: float | None = None
    top_pattern: str | None = None


class HealthIssue(BaseModel):
    issue: str
    severity: Literal["LOW", "MEDIUM", "HIGH"]
    description: str
    affected_patterns: int
    pattern_names: list[str] = Field(default_factory=list)


class RecommendedAction(BaseModel):
    action: str
    priority: Literal["LOW", "MEDIUM", "HIGH"]
    description: str
    details: dict[str, Any] = Field(default_factory=dict)


class PatternStatistics(BaseModel):
    total_patterns: int
    active_patterns: int
    inactive_patterns: int
    golden_patterns: int
    expected_golden_patterns: int
    golden_patterns_complete: bool
    golden_status: Literal["COMPLETE", "INCOMPLETE", "NEEDS_REVIEW"]
    missing_categories: list[str] = Field(default_factory=list)
    categories: list[CategoryStatistics] = Field(default_factory=list)
    health_issues: list[HealthIssue] = Field(default_factory=list)
    recommendations: list[RecommendedAction] = Field(default_factory=list)
    snapshot_version: int


class RuleUsage(BaseModel):
    rule_id: int
    rule_name: str | None = None
    category: str | None = None
    uses: int
    average_confidence: float
    last_used_at: str | None = None
