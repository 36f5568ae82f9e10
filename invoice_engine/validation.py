from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from invoice_engine.normalization import (
    email_domain_label,
    is_valid_email,
    names_consistent,
    shift_months,
    shift_years,
)
from schemas.extraction_schema import (
    REQUIRED_FIELDS,
    ExtractedInvoiceData,
    ValidationErrorItem,
    ValidationResult,
    ValidationWarningItem,
)

KNOWN_CURRENCIES: frozenset[str] = frozenset({"USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF", "CNY", "INR"})

_INVOICE_NUMBER_FORMAT = re.compile(r"^[A-Za-z0-9-]{3,20}$")
_LARGE_AMOUNT = Decimal("50000")
_AMOUNT_TOLERANCE = Decimal("0.10")
_ROUNDING_TOLERANCE = Decimal("0.01")
_MAX_TAX_RATE = Decimal("0.5")
_MAX_PAYMENT_TERM_DAYS = 90


def _suggest_invoice_number(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9-]", "", value).upper()


def _check_required(
    data: ExtractedInvoiceData,
    errors: list[ValidationErrorItem],
) -> None:
    for name in REQUIRED_FIELDS:
        value = getattr(data, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append(
                ValidationErrorItem(
                    field=name,
                    error_type="MISSING_REQUIRED",
                    message=f"{name.replace('_', ' ').capitalize()} is required but was not extracted",
                )
            )


def _check_formats(
    data: ExtractedInvoiceData,
    today: date,
    errors: list[ValidationErrorItem],
    warnings: list[ValidationWarningItem],
) -> None:
    if data.invoice_number is not None and not _INVOICE_NUMBER_FORMAT.match(data.invoice_number):
        warnings.append(
            ValidationWarningItem(
                field="invoice_number",
                warning_type="UNUSUAL_FORMAT",
                message="Invoice number format appears unusual",
                suggested_value=_suggest_invoice_number(data.invoice_number),
            )
        )

    if data.total_amount is not None:
        if data.total_amount <= 0:
            errors.append(
                ValidationErrorItem(
                    field="total_amount",
                    error_type="INVALID_VALUE",
                    message="Total amount must be positive",
                )
            )
        if data.total_amount > _LARGE_AMOUNT:
            warnings.append(
                ValidationWarningItem(
                    field="total_amount",
                    warning_type="LARGE_AMOUNT",
                    message="Large invoice amount, please verify",
                )
            )

    if data.invoice_date is not None:
        if data.invoice_date > today + timedelta(days=1):
            warnings.append(
                ValidationWarningItem(
                    field="invoice_date", warning_type="FUTURE_DATE", message="Invoice date is in the future"
                )
            )
        if data.invoice_date < shift_years(today, -2):
            warnings.append(
                ValidationWarningItem(
                    field="invoice_date", warning_type="OLD_DATE", message="Invoice date is more than 2 years old"
                )
            )

    if data.due_date is not None:
        if data.due_date < shift_months(today, -6):
            warnings.append(
                ValidationWarningItem(
                    field="due_date", warning_type="OVERDUE", message="Invoice appears to be significantly overdue"
                )
            )
        if data.due_date > shift_years(today, 1):
            warnings.append(
                ValidationWarningItem(
                    field="due_date",
                    warning_type="DISTANT_FUTURE",
                    message="Due date is unusually far in the future",
                )
            )

    if data.vendor_email is not None and not is_valid_email(data.vendor_email):
        warnings.append(
            ValidationWarningItem(
                field="vendor_email",
                warning_type="INVALID_FORMAT",
                message="Vendor email format appears invalid",
            )
        )


def _check_business_logic(
    data: ExtractedInvoiceData,
    errors: list[ValidationErrorItem],
    warnings: list[ValidationWarningItem],
) -> None:
    if data.invoice_date is not None and data.due_date is not None:
        if data.due_date < data.invoice_date:
            errors.append(
                ValidationErrorItem(
                    field="due_date",
                    error_type="INVALID_LOGIC",
                    message="Due date cannot be before invoice date",
                )
            )
        elif (data.due_date - data.invoice_date).days > _MAX_PAYMENT_TERM_DAYS:
            warnings.append(
                ValidationWarningItem(
                    field="due_date",
                    warning_type="LONG_PAYMENT_TERMS",
                    message=f"Payment terms exceed {_MAX_PAYMENT_TERM_DAYS} days",
                )
            )

    if data.subtotal_amount is not None and data.total_amount is not None:
        if data.subtotal_amount > data.total_amount:
            errors.append(
                ValidationErrorItem(
                    field="subtotal_amount",
                    error_type="INVALID_LOGIC",
                    message="Subtotal cannot be greater than total amount",
                )
            )

    if data.tax_amount is not None and data.subtotal_amount is not None and data.subtotal_amount != 0:
        rate = data.tax_amount / data.subtotal_amount
        if rate > _MAX_TAX_RATE:
            warnings.append(
                ValidationWarningItem(
                    field="tax_amount",
                    warning_type="HIGH_TAX_RATE",
                    message=f"Tax rate appears unusually high (>{int(rate * 100)}%)",
                )
            )


def _check_cross_fields(
    data: ExtractedInvoiceData,
    errors: list[ValidationErrorItem],
    warnings: list[ValidationWarningItem],
) -> None:
    if data.subtotal_amount is not None and data.tax_amount is not None and data.total_amount is not None:
        difference = abs(data.subtotal_amount + data.tax_amount - data.total_amount)
        if difference > _AMOUNT_TOLERANCE:
            errors.append(
                ValidationErrorItem(
                    field="total_amount",
                    error_type="AMOUNT_MISMATCH",
                    message=f"Total amount does not match subtotal + tax (difference: {difference})",
                )
            )
        elif difference > _ROUNDING_TOLERANCE:
            warnings.append(
                ValidationWarningItem(
                    field="total_amount",
                    warning_type="MINOR_AMOUNT_MISMATCH",
                    message=f"Minor difference in amount calculation (difference: {difference})",
                )
            )

    if data.vendor_name and data.vendor_email:
        label = email_domain_label(data.vendor_email)
        if label and not names_consistent(data.vendor_name, label):
            warnings.append(
                ValidationWarningItem(
                    field="vendor_name",
                    warning_type="VENDOR_EMAIL_MISMATCH",
                    message="Vendor name and email domain may not match",
                )
            )

    if data.currency is not None and data.currency.upper() not in KNOWN_CURRENCIES:
        warnings.append(
            ValidationWarningItem(
                field="currency",
                warning_type="UNUSUAL_CURRENCY",
                message="Currency code is not commonly used",
            )
        )


def validate_extraction(
    data: ExtractedInvoiceData,
    *,
    today: date | None = None,
    validated_at: datetime | None = None,
) -> ValidationResult:
    """Run every check and collect the findings; nothing here raises on bad data."""
    now = validated_at or datetime.now(timezone.utc)
    reference_day = today or now.date()
    errors: list[ValidationErrorItem] = []
    warnings: list[ValidationWarningItem] = []

    _check_required(data, errors)
    _check_formats(data, reference_day, errors, warnings)
    _check_business_logic(data, errors, warnings)
    _check_cross_fields(data, errors, warnings)

    return ValidationResult(
        is_valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
        validated_at=now,
    )
