from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from invoice_engine.failure_log import FailedExtractionLog
from invoice_engine.metrics import MetricsCollector
from invoice_engine.orchestrator import ExtractionOrchestrator
from invoice_engine.pattern_registry import (
    DuplicatePatternError,
    InvalidPatternError,
    PatternInUseError,
    PatternNotFoundError,
    PatternRegistry,
    RegistryUnavailableError,
)
from invoice_engine.usage_log import UsageEventLog
from schemas.extraction_schema import (
    ExtractionResultEnvelope,
    ExtractionRule,
    ExtractRequest,
    PatternCategory,
    PatternStatistics,
    PatternTestRequest,
    PatternTestResult,
    RuleDraft,
    RuleUsage,
    ToggleRequest,
)

_ERROR_STATUS: dict[type[Exception], int] = {
    InvalidPatternError: status.HTTP_400_BAD_REQUEST,
    DuplicatePatternError: status.HTTP_409_CONFLICT,
    PatternNotFoundError: status.HTTP_404_NOT_FOUND,
    PatternInUseError: status.HTTP_409_CONFLICT,
    RegistryUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": getattr(exc, "code", "error")},
    )


def create_admin_app(
    registry: PatternRegistry,
    orchestrator: ExtractionOrchestrator,
    *,
    usage_log: UsageEventLog | None = None,
    failure_log: FailedExtractionLog | None = None,
    metrics: MetricsCollector | None = None,
    on_shutdown: Callable[[], None] | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if on_shutdown is not None:
            on_shutdown()

    app = FastAPI(title="Invoice Extraction Admin API", version="0.1.0", lifespan=lifespan)

    for error_type, status_code in _ERROR_STATUS.items():

        def _handler(request: Request, exc: Exception, _code: int = status_code) -> JSONResponse:
            return _error_response(_code, exc)

        app.add_exception_handler(error_type, _handler)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "snapshot_version": registry.snapshot().version}

    @app.get("/patterns", response_model=list[ExtractionRule])
    def list_patterns() -> list[ExtractionRule]:
        return registry.list_rules()

    @app.get("/patterns/active", response_model=list[ExtractionRule])
    def list_active_patterns() -> list[ExtractionRule]:
        return registry.list_rules(active_only=True)

    @app.get("/patterns/categories")
    def list_categories() -> list[str]:
        return registry.categories()

    @app.get("/patterns/category/{category}", response_model=list[ExtractionRule])
    def list_category_patterns(category: PatternCategory, active_only: bool = False) -> list[ExtractionRule]:
        return registry.list_rules(category=category, active_only=active_only)

    @app.get("/patterns/statistics", response_model=PatternStatistics)
    def pattern_statistics() -> PatternStatistics:
        return registry.statistics()

    @app.get("/patterns/usage", response_model=list[RuleUsage])
    def pattern_usage() -> list[RuleUsage]:
        return usage_log.summary() if usage_log is not None else []

    @app.post("/patterns/test", response_model=PatternTestResult)
    def test_pattern(request: PatternTestRequest) -> PatternTestResult:
        return registry.test(request.regex, request.flags, request.sample_text)

    @app.get("/patterns/{rule_id}", response_model=ExtractionRule)
    def get_pattern(rule_id: int) -> ExtractionRule:
        return registry.get(rule_id)

    @app.post("/patterns", response_model=ExtractionRule, status_code=status.HTTP_201_CREATED)
    def create_pattern(draft: RuleDraft) -> ExtractionRule:
        return registry.create(draft)

    @app.put("/patterns/{rule_id}", response_model=ExtractionRule)
    def update_pattern(rule_id: int, draft: RuleDraft) -> ExtractionRule:
        return registry.update(rule_id, draft)

    @app.delete("/patterns/{rule_id}")
    def delete_pattern(rule_id: int) -> dict[str, Any]:
        registry.delete(rule_id)
        return {"deleted": rule_id}

    @app.patch("/patterns/{rule_id}/status", response_model=ExtractionRule)
    def toggle_pattern(rule_id: int, request: ToggleRequest) -> ExtractionRule:
        return registry.toggle_active(rule_id, request.is_active)

    @app.post("/extract", response_model=ExtractionResultEnvelope)
    def extract(request: ExtractRequest) -> ExtractionResultEnvelope:
        return orchestrator.extract(
            request.raw_text,
            email_subject=request.email_subject,
            sender_email=request.sender_email,
        )

    @app.get("/stats")
    def stats() -> dict[str, Any]:
        collector = metrics or orchestrator.metrics
        counters = collector.snapshot()
        counters["failed_log_total"] = len(failure_log.list_failures()) if failure_log is not None else 0
        counters["snapshot_version"] = registry.snapshot().version
        return counters

    @app.get("/failures")
    def failures(limit: int = 50, error_code: str | None = None) -> dict[str, Any]:
        items = failure_log.list_failures(error_code=error_code) if failure_log is not None else []
        return {"count": len(items), "items": items[-limit:]}

    return app
