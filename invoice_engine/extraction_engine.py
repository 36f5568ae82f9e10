from __future__ import annotations

import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Literal

from invoice_engine.normalization import (
    is_valid_email,
    normalize_currency,
    parse_amount,
    parse_date,
    shift_years,
    split_lines,
)
from invoice_engine.pattern_registry import CompiledRule, RegistrySnapshot
from schemas.extraction_schema import ExtractedInvoiceData, FieldExtraction, PatternCategory

logger = logging.getLogger(__name__)

ACCEPT_THRESHOLD = 0.5

SearchStrategy = Literal["header", "keyword", "document"]
ValueKind = Literal["identifier", "amount", "date", "email", "currency", "text"]

_ID_SHAPE = re.compile(r"[A-Z]{2,4}-[0-9]{3,10}")
_TEXT_STRIP = " \t,;:-"


class ExtractionTimeoutError(RuntimeError):
    def __init__(self, message: str, code: str = "extraction_timeout") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class FieldSpec:
    field_name: str
    categories: tuple[PatternCategory, ...]
    strategy: SearchStrategy
    value_kind: ValueKind
    keywords: tuple[str, ...] = ()
    lookahead: int = 0
    # lines holding any of these never open a keyword window
    excluded_keywords: tuple[str, ...] = ()
    # searched after ``categories``, unlabelled rules only
    fallback_category: PatternCategory | None = None


_AMOUNT_LOOKAHEAD = 2
_DATE_LOOKAHEAD = 1

FIELD_SPECS: tuple[FieldSpec, ...] = (
    FieldSpec("invoice_number", (PatternCategory.INVOICE_NUMBER,), "header", "identifier"),
    FieldSpec(
        "total_amount",
        (PatternCategory.AMOUNT,),
        "keyword",
        "amount",
        keywords=("total", "amount due", "balance due", "grand total", "final amount"),
        lookahead=_AMOUNT_LOOKAHEAD,
    ),
    FieldSpec(
        "subtotal_amount",
        (PatternCategory.SUBTOTAL_AMOUNT,),
        "keyword",
        "amount",
        keywords=("subtotal", "sub total", "sub-total", "net amount"),
        lookahead=_AMOUNT_LOOKAHEAD,
    ),
    FieldSpec(
        "tax_amount",
        (PatternCategory.TAX_AMOUNT,),
        "keyword",
        "amount",
        keywords=("tax", "vat", "gst", "sales tax", "tax amount"),
        lookahead=_AMOUNT_LOOKAHEAD,
    ),
    FieldSpec(
        "invoice_date",
        (PatternCategory.INVOICE_DATE,),
        "keyword",
        "date",
        keywords=("invoice date", "date", "bill date", "issued", "date issued"),
        lookahead=_DATE_LOOKAHEAD,
    ),
    # bare invoice-date shapes double as generic dates inside due-date windows
    FieldSpec(
        "due_date",
        (PatternCategory.DUE_DATE,),
        "keyword",
        "date",
        keywords=("due date", "payment due", "due", "pay by", "payment date"),
        lookahead=_DATE_LOOKAHEAD,
        excluded_keywords=("total", "amount due", "balance due", "subtotal", "tax"),
        fallback_category=PatternCategory.INVOICE_DATE,
    ),
    FieldSpec("vendor_name", (PatternCategory.VENDOR,), "document", "text"),
    FieldSpec("vendor_email", (PatternCategory.EMAIL,), "document", "email"),
    FieldSpec("vendor_address", (PatternCategory.ADDRESS,), "document", "text"),
    FieldSpec("vendor_phone", (PatternCategory.PHONE,), "document", "text"),
    FieldSpec("customer_name", (PatternCategory.CUSTOMER,), "document", "text"),
    FieldSpec("currency", (PatternCategory.CURRENCY,), "document", "currency"),
    FieldSpec("payment_terms", (PatternCategory.PAYMENT_TERMS,), "document", "text"),
)

FIELD_SPECS_BY_NAME: dict[str, FieldSpec] = {spec.field_name: spec for spec in FIELD_SPECS}


@dataclass(frozen=True)
class _SearchUnit:
    text: str
    line_number: int | None


def _header_units(lines: list[str], scan_lines: int) -> list[_SearchUnit]:
    return [_SearchUnit(line, idx + 1) for idx, line in enumerate(lines[:scan_lines])]


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    body = r"\s+".join(re.escape(part) for part in keyword.split())
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


# invoice-date labels that must not be read as a due date
_INVOICE_DATE_LABEL = re.compile(r"invoice|bill|issue", re.IGNORECASE)


def _is_bare_date_rule(compiled: CompiledRule) -> bool:
    return _INVOICE_DATE_LABEL.search(compiled.rule.regex) is None


def _keyword_units(
    lines: list[str],
    keywords: tuple[str, ...],
    lookahead: int,
    excluded: tuple[str, ...] = (),
) -> list[_SearchUnit]:
    blocked = [_keyword_pattern(keyword) for keyword in excluded]
    seen: set[int] = set()
    units: list[_SearchUnit] = []
    for keyword in keywords:
        pattern = _keyword_pattern(keyword)
        for idx, line in enumerate(lines):
            if idx in seen or not pattern.search(line):
                continue
            if any(block.search(line) for block in blocked):
                continue
            seen.add(idx)
            units.append(_SearchUnit("\n".join(lines[idx : idx + 1 + lookahead]), idx + 1))
    return units


def _clean_text(value: str) -> str:
    return " ".join(value.split()).strip(_TEXT_STRIP)


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


@dataclass(frozen=True)
class _Candidate:
    value: str
    confidence: float
    unit: _SearchUnit
    matched_text: str


class FieldExtractionEngine:
    """Runs the active rule snapshot over invoice text, one worker task per field.

    The engine holds no per-invoice state; everything a call needs arrives as
    arguments, so one instance serves concurrent callers.
    """

    def __init__(
        self,
        *,
        worker_pool_size: int = 4,
        header_scan_lines: int = 15,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._header_scan_lines = header_scan_lines
        self._timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=worker_pool_size, thread_name_prefix="field-extraction"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "FieldExtractionEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _units_for(self, spec: FieldSpec, lines: list[str]) -> list[_SearchUnit]:
        if spec.strategy == "header":
            return _header_units(lines, self._header_scan_lines)
        if spec.strategy == "keyword":
            return _keyword_units(lines, spec.keywords, spec.lookahead, spec.excluded_keywords)
        return [_SearchUnit("\n".join(lines), None)] if lines else []

    def _normalize_value(self, spec: FieldSpec, compiled: CompiledRule, raw: str) -> str | None:
        value = raw.strip()
        if spec.value_kind == "date":
            parsed = parse_date(value, compiled.rule.date_format)
            return parsed.isoformat() if parsed else None
        if spec.value_kind == "currency":
            return normalize_currency(value)
        if spec.value_kind == "text":
            return _clean_text(value) or None
        return value

    def _plausibility(self, spec: FieldSpec, value: str, today: date) -> float:
        if spec.value_kind == "identifier":
            adjustment = 0.1 if 6 <= len(value) <= 20 else 0.0
            if _ID_SHAPE.fullmatch(value):
                adjustment += 0.1
            return adjustment
        if spec.value_kind == "amount":
            amount = parse_amount(value)
            if amount is None:
                return -0.3
            return 0.1 if 0 < amount < 1_000_000 else 0.0
        if spec.value_kind == "date":
            parsed = date.fromisoformat(value)
            return 0.1 if shift_years(today, -2) <= parsed <= shift_years(today, 1) else 0.0
        if spec.value_kind == "email":
            return 0.0 if is_valid_email(value) else -0.3
        if spec.value_kind == "text" and not any(ch.isalpha() for ch in value):
            return -0.2
        return 0.0

    def _score(self, compiled: CompiledRule, match: re.Match[str], value: str) -> float:
        multiplier = 1.0
        if match.start() == 0 or match.group(0)[:1].isspace():
            multiplier += 0.1
        if 3 < len(value) < 50:
            multiplier += 0.05
        priority = compiled.rule.priority
        if priority <= 10:
            multiplier += 0.1
        elif priority <= 50:
            multiplier += 0.05
        return min(compiled.rule.effective_weight * multiplier, 1.0)

    def _best_candidate(
        self,
        spec: FieldSpec,
        compiled: CompiledRule,
        units: list[_SearchUnit],
        today: date,
    ) -> _Candidate | None:
        rule = compiled.rule
        if rule.capture_group > compiled.pattern.groups:
            logger.warning(
                "Rule %s asks for capture group %d but has %d",
                rule.name,
                rule.capture_group,
                compiled.pattern.groups,
                extra={"rule_name": rule.name, "category": rule.category.value},
            )
            return None
        best: _Candidate | None = None
        for unit in units:
            match = compiled.pattern.search(unit.text)
            if match is None:
                continue
            raw = match.group(rule.capture_group)
            if raw is None or not raw.strip():
                continue
            if compiled.validator is not None and not compiled.validator.fullmatch(raw.strip()):
                continue
            value = self._normalize_value(spec, compiled, raw)
            if value is None:
                continue
            confidence = _clamp(self._score(compiled, match, value) + self._plausibility(spec, value, today))
            # strict comparison keeps the earliest unit on ties
            if best is None or confidence > best.confidence:
                best = _Candidate(value, confidence, unit, match.group(0))
        return best

    def extract_field(
        self,
        field_name: str,
        text: str,
        snapshot: RegistrySnapshot,
        *,
        today: date | None = None,
    ) -> FieldExtraction | None:
        spec = FIELD_SPECS_BY_NAME[field_name]
        reference_day = today or datetime.now(timezone.utc).date()
        lines = split_lines(text)
        units = self._units_for(spec, lines)
        if not units:
            return None
        for compiled in self._rules_in_order(spec, snapshot):
            candidate = self._best_candidate(spec, compiled, units, reference_day)
            if candidate is None or candidate.confidence < ACCEPT_THRESHOLD:
                continue
            rule = compiled.rule
            source = candidate.matched_text if spec.strategy == "document" else candidate.unit.text
            return FieldExtraction(
                field_name=spec.field_name,
                value=candidate.value,
                confidence=round(candidate.confidence, 4),
                method="keyword-context" if spec.strategy == "keyword" else "pattern-match",
                rule_id=rule.id,
                rule_name=rule.name,
                category=rule.category,
                source_text=source[:200],
                line_number=candidate.unit.line_number,
            )
        return None

    def _rules_in_order(self, spec: FieldSpec, snapshot: RegistrySnapshot) -> list[CompiledRule]:
        ordered = [compiled for category in spec.categories for compiled in snapshot.rules_for(category)]
        if spec.fallback_category is not None:
            ordered.extend(
                compiled
                for compiled in snapshot.rules_for(spec.fallback_category)
                if _is_bare_date_rule(compiled)
            )
        return ordered

    def extract_fields(
        self,
        text: str,
        snapshot: RegistrySnapshot,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> ExtractedInvoiceData:
        extracted_at = now or datetime.now(timezone.utc)
        reference_day = extracted_at.date()
        futures: dict[str, Future[FieldExtraction | None]] = {
            spec.field_name: self._executor.submit(
                self.extract_field, spec.field_name, text, snapshot, today=reference_day
            )
            for spec in FIELD_SPECS
        }
        limit = self._timeout_seconds if timeout is None else timeout
        _, pending = wait(futures.values(), timeout=limit)
        if pending:
            for future in pending:
                future.cancel()
            raise ExtractionTimeoutError(f"Field extraction did not finish within {limit:.2f}s")

        extractions = [futures[spec.field_name].result() for spec in FIELD_SPECS]
        return build_invoice_data(
            [item for item in extractions if item is not None],
            extracted_at=extracted_at,
        )


def build_invoice_data(
    extractions: list[FieldExtraction],
    *,
    extracted_at: datetime | None = None,
) -> ExtractedInvoiceData:
    values: dict[str, Any] = {}
    for item in extractions:
        spec = FIELD_SPECS_BY_NAME.get(item.field_name)
        if spec is None or item.field_name in values:
            continue
        if spec.value_kind == "amount":
            amount = parse_amount(item.value)
            if amount is None:
                logger.warning(
                    "Keeping unparseable %s %r as provenance only",
                    item.field_name,
                    item.value,
                    extra={"rule_name": item.rule_name},
                )
                continue
            values[item.field_name] = amount
        elif spec.value_kind == "date":
            values[item.field_name] = date.fromisoformat(item.value)
        else:
            values[item.field_name] = item.value
    return ExtractedInvoiceData(
        **values,
        field_extractions=tuple(extractions),
        extracted_at=extracted_at or datetime.now(timezone.utc),
    )
