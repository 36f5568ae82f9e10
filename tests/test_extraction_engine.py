from __future__ import annotations

import time
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from invoice_engine.extraction_engine import ExtractionTimeoutError, FieldExtractionEngine
from invoice_engine.pattern_registry import PatternRegistry, build_snapshot
from schemas.extraction_schema import ExtractionRule, PatternCategory, RuleDraft

NOW = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)


def _rule(rule_id: int, **overrides: object) -> ExtractionRule:
    payload: dict[str, object] = {
        "id": rule_id,
        "name": f"rule-{rule_id}",
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"invoice\s+number\s+([A-Z0-9-]{3,})",
    }
    payload.update(overrides)
    return ExtractionRule(**payload)


def test_labelled_invoice_number_is_extracted(registry: PatternRegistry, engine: FieldExtractionEngine) -> None:
    registry.create(
        RuleDraft(
            name="InvoiceNumber_Labelled",
            category=PatternCategory.INVOICE_NUMBER,
            regex=r"invoice\s+number\s+([A-Z0-9-]{3,})",
        )
    )
    found = engine.extract_field("invoice_number", "Invoice Number INV-3337", registry.snapshot(), today=NOW.date())

    assert found is not None
    assert found.value == "INV-3337"
    assert found.confidence >= 0.5
    assert found.method == "pattern-match"
    assert found.line_number == 1


def test_sample_invoice_extracts_all_core_fields(
    seeded_registry: PatternRegistry, engine: FieldExtractionEngine, sample_invoice: str
) -> None:
    data = engine.extract_fields(sample_invoice, seeded_registry.snapshot(), now=NOW)

    assert data.invoice_number == "INV-3337"
    assert data.total_amount == Decimal("93.50")
    assert data.subtotal_amount == Decimal("80.00")
    assert data.tax_amount == Decimal("13.50")
    assert data.invoice_date == date(2026, 1, 5)
    assert data.due_date == date(2026, 2, 4)
    assert data.vendor_name == "Acme Corporation"
    assert data.vendor_email == "billing@acme.com"
    assert data.customer_name == "Globex Ltd"
    assert data.currency == "USD"
    assert data.payment_terms == "Net 30"
    assert data.vendor_address is None
    assert data.extracted_at == NOW
    assert data.extracted_field_count() == 8

    by_field = {item.field_name: item for item in data.field_extractions}
    assert by_field["total_amount"].method == "keyword-context"
    assert by_field["total_amount"].rule_name == "TotalDue_CurrencyFirst"
    assert by_field["vendor_name"].method == "pattern-match"
    assert all(0.5 <= item.confidence <= 1.0 for item in data.field_extractions)


def test_total_due_with_dollar_sign(seeded_registry: PatternRegistry, engine: FieldExtractionEngine) -> None:
    data = engine.extract_fields("Total Due $93.50", seeded_registry.snapshot(), now=NOW)
    assert data.total_amount == Decimal("93.50")
    assert data.currency == "USD"


def test_amount_on_line_after_keyword(seeded_registry: PatternRegistry, engine: FieldExtractionEngine) -> None:
    data = engine.extract_fields("Grand Total\n$1,234.56", seeded_registry.snapshot(), now=NOW)
    assert data.total_amount == Decimal("1234.56")
    assert data.confidence_for("total_amount") >= 0.5


def test_due_date_falls_back_to_generic_date_rules(
    seeded_registry: PatternRegistry, engine: FieldExtractionEngine
) -> None:
    data = engine.extract_fields("Due: 03/15/2026", seeded_registry.snapshot(), now=NOW)

    assert data.due_date == date(2026, 3, 15)
    assert data.invoice_date is None
    due = next(item for item in data.field_extractions if item.field_name == "due_date")
    assert due.category == PatternCategory.INVOICE_DATE
    assert due.method == "keyword-context"


def test_first_rule_clearing_threshold_wins_over_later_rules(engine: FieldExtractionEngine) -> None:
    snapshot = build_snapshot(
        [
            _rule(1, name="Primary", priority=1, regex=r"ref\s+(\d{3})"),
            _rule(2, name="Secondary", priority=2, regex=r"invoice\s+number\s+([A-Z0-9-]{3,})"),
        ],
        version=1,
    )
    found = engine.extract_field("invoice_number", "Invoice Number INV-0042\nRef 123", snapshot, today=NOW.date())
    assert found is not None
    assert found.rule_name == "Primary"
    assert found.value == "123"
    assert found.line_number == 2


def test_low_scoring_rule_is_skipped_and_field_left_empty(engine: FieldExtractionEngine) -> None:
    snapshot = build_snapshot([_rule(1, confidence_weight=0.1, priority=900)], version=1)
    assert engine.extract_field("invoice_number", "Invoice Number INV-12", snapshot, today=NOW.date()) is None


def test_validation_regex_filters_candidates(engine: FieldExtractionEngine) -> None:
    snapshot = build_snapshot([_rule(1, validation_regex=r"INV-\d+")], version=1)
    assert engine.extract_field("invoice_number", "Invoice Number ABC-1", snapshot, today=NOW.date()) is None
    found = engine.extract_field("invoice_number", "Invoice Number INV-77", snapshot, today=NOW.date())
    assert found is not None and found.value == "INV-77"


def test_capture_group_beyond_pattern_groups_skips_rule(engine: FieldExtractionEngine) -> None:
    snapshot = build_snapshot([_rule(1, capture_group=2)], version=1)
    assert engine.extract_field("invoice_number", "Invoice Number INV-3337", snapshot, today=NOW.date()) is None


def test_header_scan_is_limited_to_first_lines() -> None:
    snapshot = build_snapshot([_rule(1)], version=1)
    text = "\n".join(["filler"] * 3 + ["Invoice Number INV-3337"])
    with FieldExtractionEngine(worker_pool_size=1, header_scan_lines=3) as short:
        assert short.extract_field("invoice_number", text, snapshot, today=NOW.date()) is None
    with FieldExtractionEngine(worker_pool_size=1, header_scan_lines=4) as longer:
        assert longer.extract_field("invoice_number", text, snapshot, today=NOW.date()) is not None


def test_unparseable_amount_kept_as_provenance_only(engine: FieldExtractionEngine) -> None:
    snapshot = build_snapshot(
        [
            _rule(
                1,
                name="Loose_Total",
                category=PatternCategory.AMOUNT,
                regex=r"total\s*:\s*(\S+)",
                priority=1,
                confidence_weight=1.0,
            )
        ],
        version=1,
    )
    data = engine.extract_fields("Total: N/A", snapshot, now=NOW)

    assert data.total_amount is None
    provenance = [item for item in data.field_extractions if item.field_name == "total_amount"]
    assert len(provenance) == 1
    assert provenance[0].value == "N/A"
    assert provenance[0].confidence == pytest.approx(0.7)


def test_empty_text_extracts_nothing(seeded_registry: PatternRegistry, engine: FieldExtractionEngine) -> None:
    data = engine.extract_fields("", seeded_registry.snapshot(), now=NOW)
    assert data.extracted_field_count() == 0
    assert data.field_extractions == ()


def test_slow_field_task_raises_timeout(
    monkeypatch: pytest.MonkeyPatch, seeded_registry: PatternRegistry
) -> None:
    engine = FieldExtractionEngine(worker_pool_size=2, timeout_seconds=0.05)

    def _slow(*_: object, **__: object) -> None:
        time.sleep(0.3)
        return None

    monkeypatch.setattr(engine, "extract_field", _slow)
    try:
        with pytest.raises(ExtractionTimeoutError) as excinfo:
            engine.extract_fields("Invoice Number INV-1", seeded_registry.snapshot(), now=NOW)
        assert excinfo.value.code == "extraction_timeout"
    finally:
        engine.close()


def test_due_date_ignores_invoice_date_after_total_due_line(
    seeded_registry: PatternRegistry, engine: FieldExtractionEngine
) -> None:
    text = "ACME Inc.\nInvoice Number INV-3337\nTotal Due $93.50\nInvoice Date: 01/05/2026\nDue: 02/04/2026"
    data = engine.extract_fields(text, seeded_registry.snapshot(), now=NOW)

    assert data.invoice_date == date(2026, 1, 5)
    assert data.due_date == date(2026, 2, 4)
    due = next(item for item in data.field_extractions if item.field_name == "due_date")
    assert due.line_number == 5


def test_due_date_fallback_skips_labelled_invoice_date_rules(engine: FieldExtractionEngine) -> None:
    labelled = _rule(
        1,
        name="Labelled_Invoice_Date",
        category=PatternCategory.INVOICE_DATE,
        regex=r"invoice\s+date\s*:\s*(\d{1,2}/\d{1,2}/\d{4})",
    )
    bare = _rule(2, name="Bare_Date", category=PatternCategory.INVOICE_DATE, regex=r"(\d{1,2}/\d{1,2}/\d{4})")
    text = "Due\nInvoice Date: 01/05/2026"

    only_labelled = build_snapshot([labelled], version=1)
    assert engine.extract_field("invoice_date", text, only_labelled, today=NOW.date()) is not None
    assert engine.extract_field("due_date", text, only_labelled, today=NOW.date()) is None

    with_bare = build_snapshot([labelled, bare], version=2)
    found = engine.extract_field("due_date", "Due: 02/04/2026", with_bare, today=NOW.date())
    assert found is not None
    assert found.rule_name == "Bare_Date"


def test_keywords_match_whole_words_only(engine: FieldExtractionEngine) -> None:
    snapshot = build_snapshot(
        [
            _rule(
                1,
                name="Any_Dollar_Amount",
                category=PatternCategory.AMOUNT,
                regex=r"\$([0-9]+\.[0-9]{2})",
            )
        ],
        version=1,
    )
    assert engine.extract_field("total_amount", "Subtotal: $80.00", snapshot, today=NOW.date()) is None
    found = engine.extract_field("total_amount", "Subtotal: $80.00\nTotal: $93.50", snapshot, today=NOW.date())
    assert found is not None
    assert found.value == "93.50"
