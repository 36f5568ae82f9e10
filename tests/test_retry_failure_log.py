from __future__ import annotations

from pathlib import Path

import pytest

from invoice_engine.failure_log import FailedExtractionLog
from invoice_engine.retry_utils import RetryPolicy, run_with_retry


class _TransientError(RuntimeError):
    pass


class _FatalError(RuntimeError):
    pass


def test_run_with_retry_succeeds_after_transient_failures() -> None:
    state = {"count": 0}
    sleeps: list[float] = []

    def _op() -> str:
        state["count"] += 1
        if state["count"] < 3:
            raise _TransientError("temporary")
        return "ok"

    result = run_with_retry(
        operation=_op,
        should_retry=lambda e: isinstance(e, _TransientError),
        policy=RetryPolicy(max_attempts=4, base_delay_seconds=0.01, max_delay_seconds=0.02),
        sleep_fn=sleeps.append,
    )
    assert result == "ok"
    assert len(sleeps) == 2


def test_run_with_retry_stops_on_non_retryable_error() -> None:
    calls = {"count": 0}

    def _op() -> str:
        calls["count"] += 1
        raise _FatalError("bad request")

    with pytest.raises(_FatalError):
        run_with_retry(
            operation=_op,
            should_retry=lambda e: isinstance(e, _TransientError),
            policy=RetryPolicy(max_attempts=5, base_delay_seconds=0.01),
            sleep_fn=lambda _: None,
        )
    assert calls["count"] == 1


def test_run_with_retry_reraises_last_error_when_exhausted() -> None:
    sleeps: list[float] = []

    def _op() -> str:
        raise _TransientError("still down")

    with pytest.raises(_TransientError, match="still down"):
        run_with_retry(
            operation=_op,
            should_retry=lambda e: isinstance(e, _TransientError),
            policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.01),
            sleep_fn=sleeps.append,
        )
    assert len(sleeps) == 2


def test_retry_delay_is_capped() -> None:
    policy = RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=2.0, jitter_ratio=0.0)
    assert policy.delay_for_attempt(1) == 1.0
    assert policy.delay_for_attempt(5) == 2.0


def test_failure_log_write_and_query(tmp_path: Path) -> None:
    log = FailedExtractionLog(file_path=tmp_path / "failed.jsonl")
    log.write_failure({"extraction_id": "ext-1", "status": "FAILED", "error_code": "extraction_timeout"})
    log.write_failure({"extraction_id": "ext-2", "status": "FAILED", "error_code": "pipeline_error"})

    all_items = log.list_failures()
    timeouts = log.list_failures(error_code="extraction_timeout")

    assert len(all_items) == 2
    assert len(timeouts) == 1
    assert timeouts[0]["extraction_id"] == "ext-1"
    assert "recorded_at_utc" in timeouts[0]


def test_failure_log_missing_file_is_empty(tmp_path: Path) -> None:
    log = FailedExtractionLog(file_path=tmp_path / "nested" / "failed.jsonl")
    assert log.list_failures() == []
