from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from invoice_engine.classification import classify
from invoice_engine.confidence import calculate_confidence
from invoice_engine.config import Settings
from invoice_engine.context_enhancer import ContextEnhancer
from invoice_engine.extraction_engine import ExtractionTimeoutError, FieldExtractionEngine
from invoice_engine.failure_log import FailedExtractionLog
from invoice_engine.logger import log_extraction_event
from invoice_engine.metrics import JsonlMetricsSink, MetricsCollector
from invoice_engine.pattern_registry import PatternRegistry, RegistryUnavailableError
from invoice_engine.pattern_store import PatternStore
from invoice_engine.state_machine import ExtractionStateTracker
from invoice_engine.usage_log import UsageEventLog
from invoice_engine.validation import validate_extraction
from schemas.extraction_schema import ExtractionResultEnvelope

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_extraction_id() -> str:
    return str(uuid4())


class ExtractionOrchestrator:
    """Drives one invoice text from RECEIVED to CLASSIFIED (or FAILED).

    Every stage failure becomes a FAILED envelope; callers never see an
    exception from ``extract``.
    """

    def __init__(
        self,
        registry: PatternRegistry,
        engine: FieldExtractionEngine,
        enhancer: ContextEnhancer,
        *,
        usage_log: UsageEventLog | None = None,
        failure_log: FailedExtractionLog | None = None,
        metrics: MetricsCollector | None = None,
        metrics_sink: JsonlMetricsSink | None = None,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = _new_extraction_id,
    ) -> None:
        self._registry = registry
        self._engine = engine
        self._enhancer = enhancer
        self._usage_log = usage_log
        self._failure_log = failure_log
        self._metrics = metrics or MetricsCollector()
        self._metrics_sink = metrics_sink
        self._clock = clock
        self._id_factory = id_factory

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def _advance(self, tracker: ExtractionStateTracker, to_state: str, extraction_id: str, started: float) -> None:
        tracker.advance(to_state)
        log_extraction_event(
            logger,
            logging.INFO,
            f"Extraction moved to {to_state}",
            extraction_id=extraction_id,
            state=to_state,
            stage=to_state.lower(),
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

    def extract(
        self,
        raw_text: str,
        email_subject: str | None = None,
        sender_email: str | None = None,
    ) -> ExtractionResultEnvelope:
        started_at = self._clock()
        today = started_at.date()
        extraction_id = self._id_factory()
        tracker = ExtractionStateTracker()
        started = time.perf_counter()
        text = raw_text or ""

        try:
            snapshot = self._registry.snapshot()
            data = self._engine.extract_fields(text, snapshot, now=started_at)
            self._advance(tracker, "EXTRACTED", extraction_id, started)

            data = self._enhancer.enhance(
                data,
                snapshot,
                email_subject=email_subject,
                sender_email=sender_email,
                today=today,
            )
            self._advance(tracker, "ENHANCED", extraction_id, started)

            validation = validate_extraction(data, today=today, validated_at=started_at)
            self._advance(tracker, "VALIDATED", extraction_id, started)

            confidence = calculate_confidence(data, validation, today=today)
            self._advance(tracker, "SCORED", extraction_id, started)

            decision = classify(data.extracted_field_count(), confidence.overall, validation)
            self._advance(tracker, "CLASSIFIED", extraction_id, started)
        except Exception as exc:  # noqa: BLE001
            return self._failed(
                exc,
                tracker=tracker,
                extraction_id=extraction_id,
                started_at=started_at,
                started=started,
                text=text,
                email_subject=email_subject,
                sender_email=sender_email,
            )

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        envelope = ExtractionResultEnvelope(
            extraction_id=extraction_id,
            status=decision.status,
            recommendation=decision.recommendation,
            overall_confidence=confidence.overall,
            state=tracker.state,
            state_history=tracker.history,
            data=data,
            validation=validation,
            confidence=confidence,
            started_at=started_at,
            processing_time_ms=processing_time_ms,
            input_text_length=len(text),
            email_subject=email_subject,
            sender_email=sender_email,
        )
        self._record_usage(extraction_id, envelope)
        self._record_metrics(envelope)
        log_extraction_event(
            logger,
            logging.INFO,
            f"Extraction classified as {decision.status} ({decision.recommendation})",
            extraction_id=extraction_id,
            state=tracker.state,
            latency_ms=processing_time_ms,
            outcome=decision.status,
        )
        return envelope

    def _failed(
        self,
        exc: Exception,
        *,
        tracker: ExtractionStateTracker,
        extraction_id: str,
        started_at: datetime,
        started: float,
        text: str,
        email_subject: str | None,
        sender_email: str | None,
    ) -> ExtractionResultEnvelope:
        if isinstance(exc, (RegistryUnavailableError, ExtractionTimeoutError)):
            error_code = exc.code
        else:
            error_code = "pipeline_error"
        failed_in = tracker.state
        tracker.fail()
        processing_time_ms = int((time.perf_counter() - started) * 1000)
        logger.error(
            "Extraction failed after %s: %s",
            failed_in,
            exc,
            exc_info=exc,
            extra={"extraction_id": extraction_id, "state": "FAILED", "outcome": error_code},
        )
        envelope = ExtractionResultEnvelope(
            extraction_id=extraction_id,
            status="FAILED",
            recommendation="MANUAL_PROCESSING",
            overall_confidence=0.0,
            state=tracker.state,
            state_history=tracker.history,
            started_at=started_at,
            processing_time_ms=processing_time_ms,
            input_text_length=len(text),
            email_subject=email_subject,
            sender_email=sender_email,
            error=str(exc) or exc.__class__.__name__,
            error_code=error_code,
        )
        self._record_failure(
            {
                "extraction_id": extraction_id,
                "status": "FAILED",
                "failed_in_state": failed_in,
                "error_code": error_code,
                "error_message": envelope.error,
                "input_text_length": len(text),
                "email_subject": email_subject,
                "sender_email": sender_email,
            }
        )
        self._record_metrics(envelope)
        return envelope

    def _record_usage(self, extraction_id: str, envelope: ExtractionResultEnvelope) -> None:
        if self._usage_log is None or envelope.data is None:
            return
        try:
            recorded = self._usage_log.record(extraction_id, envelope.data.field_extractions)
        except OSError:
            logger.exception("Could not append usage events", extra={"extraction_id": extraction_id})
            return
        self._metrics.increment("usage_events_total", recorded)

    def _record_failure(self, payload: dict[str, object]) -> None:
        if self._failure_log is None:
            return
        try:
            self._failure_log.write_failure(payload)
        except OSError:
            logger.exception(
                "Could not append failed extraction", extra={"extraction_id": payload["extraction_id"]}
            )

    def _record_metrics(self, envelope: ExtractionResultEnvelope) -> None:
        self._metrics.record_extraction(envelope.status, envelope.recommendation, envelope.processing_time_ms)
        if self._metrics_sink is None:
            return
        try:
            self._metrics_sink.emit(
                {
                    "metric": "extraction",
                    "extraction_id": envelope.extraction_id,
                    "status": envelope.status,
                    "recommendation": envelope.recommendation,
                    "overall_confidence": envelope.overall_confidence,
                    "latency_ms": envelope.processing_time_ms,
                }
            )
        except OSError:
            logger.exception("Could not emit extraction metric", extra={"extraction_id": envelope.extraction_id})


@dataclass
class EngineRuntime:
    settings: Settings
    store: PatternStore
    registry: PatternRegistry
    engine: FieldExtractionEngine
    orchestrator: ExtractionOrchestrator
    usage_log: UsageEventLog
    failure_log: FailedExtractionLog
    metrics: MetricsCollector

    def close(self) -> None:
        self.engine.close()


def build_runtime(settings: Settings, *, clock: Callable[[], datetime] = _utc_now) -> EngineRuntime:
    store = PatternStore(settings.pattern_db_path)
    usage_log = UsageEventLog(settings.usage_log_path)
    failure_log = FailedExtractionLog(settings.failure_log_path)
    metrics = MetricsCollector()
    registry = PatternRegistry(store, usage_log, max_pattern_length=settings.max_pattern_length)
    if settings.seed_golden_patterns:
        registry.seed_if_empty()
    engine = FieldExtractionEngine(
        worker_pool_size=settings.worker_pool_size,
        header_scan_lines=settings.header_scan_lines,
        timeout_seconds=settings.extraction_timeout_seconds,
    )
    enhancer = ContextEnhancer(engine, default_currency=settings.default_currency)
    orchestrator = ExtractionOrchestrator(
        registry,
        engine,
        enhancer,
        usage_log=usage_log,
        failure_log=failure_log,
        metrics=metrics,
        metrics_sink=JsonlMetricsSink(settings.metrics_path),
        clock=clock,
    )
    return EngineRuntime(
        settings=settings,
        store=store,
        registry=registry,
        engine=engine,
        orchestrator=orchestrator,
        usage_log=usage_log,
        failure_log=failure_log,
        metrics=metrics,
    )
