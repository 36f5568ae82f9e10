from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from invoice_engine.context_enhancer import ContextEnhancer
from invoice_engine.extraction_engine import FieldExtractionEngine
from invoice_engine.failure_log import FailedExtractionLog
from invoice_engine.metrics import MetricsCollector
from invoice_engine.orchestrator import ExtractionOrchestrator
from invoice_engine.pattern_registry import PatternRegistry
from invoice_engine.pattern_store import PatternStore
from invoice_engine.usage_log import UsageEventLog

FIXED_NOW = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)

SAMPLE_INVOICE = """
ACME Corporation
From: Acme Corporation
Invoice Number INV-3337
Invoice Date: 2026-01-05
Due Date: 2026-02-04
Email: billing@acme.com
Bill To: Globex Ltd
Subtotal: $80.00
Tax: $13.50
Total Due $93.50
Payment terms: Net 30
"""


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def sample_invoice() -> str:
    return SAMPLE_INVOICE


@pytest.fixture
def store(tmp_path: Path) -> PatternStore:
    return PatternStore(db_path=tmp_path / "patterns.db")


@pytest.fixture
def usage_log(tmp_path: Path) -> UsageEventLog:
    return UsageEventLog(file_path=tmp_path / "logs" / "pattern_usage.jsonl")


@pytest.fixture
def failure_log(tmp_path: Path) -> FailedExtractionLog:
    return FailedExtractionLog(file_path=tmp_path / "logs" / "failed_extractions.jsonl")


@pytest.fixture
def registry(store: PatternStore, usage_log: UsageEventLog) -> PatternRegistry:
    return PatternRegistry(store, usage_log, sleep_fn=lambda _: None)


@pytest.fixture
def seeded_registry(registry: PatternRegistry) -> PatternRegistry:
    registry.seed_if_empty()
    return registry


@pytest.fixture
def engine() -> Iterator[FieldExtractionEngine]:
    with FieldExtractionEngine(worker_pool_size=4, timeout_seconds=5.0) as instance:
        yield instance


@pytest.fixture
def orchestrator(
    seeded_registry: PatternRegistry,
    engine: FieldExtractionEngine,
    usage_log: UsageEventLog,
    failure_log: FailedExtractionLog,
) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        seeded_registry,
        engine,
        ContextEnhancer(engine),
        usage_log=usage_log,
        failure_log=failure_log,
        metrics=MetricsCollector(),
        clock=lambda: FIXED_NOW,
    )
