from __future__ import annotations

from pathlib import Path

from invoice_engine.usage_log import UsageEventLog
from schemas.extraction_schema import FieldExtraction, PatternCategory


def _extraction(field_name: str, rule_id: int | None, confidence: float) -> FieldExtraction:
    return FieldExtraction(
        field_name=field_name,
        value="x",
        confidence=confidence,
        method="pattern-match" if rule_id is not None else "email-enhancement",
        rule_id=rule_id,
        rule_name=f"rule-{rule_id}" if rule_id is not None else None,
        category=PatternCategory.INVOICE_NUMBER if rule_id is not None else None,
    )


def test_record_skips_extractions_without_rule(tmp_path: Path) -> None:
    log = UsageEventLog(file_path=tmp_path / "usage.jsonl")
    written = log.record(
        "ext-1",
        [_extraction("invoice_number", 1, 0.9), _extraction("vendor_name", None, 0.8)],
    )

    assert written == 1
    events = log.list_events()
    assert len(events) == 1
    assert events[0]["extraction_id"] == "ext-1"
    assert events[0]["category"] == "INVOICE_NUMBER"


def test_summary_aggregates_on_read(tmp_path: Path) -> None:
    log = UsageEventLog(file_path=tmp_path / "usage.jsonl")
    log.record("ext-1", [_extraction("invoice_number", 1, 0.9), _extraction("total_amount", 2, 0.6)])
    log.record("ext-2", [_extraction("invoice_number", 1, 0.7)])

    summary = log.summary()
    assert [item.rule_id for item in summary] == [1, 2]
    assert summary[0].uses == 2
    assert summary[0].average_confidence == 0.8
    assert summary[0].last_used_at is not None
    assert log.has_usage(2)
    assert not log.has_usage(3)


def test_empty_log(tmp_path: Path) -> None:
    log = UsageEventLog(file_path=tmp_path / "usage.jsonl")
    assert log.record("ext-1", []) == 0
    assert log.summary() == []
    assert log.list_events(rule_id=1) == []
