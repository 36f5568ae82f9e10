from __future__ import annotations

import json
from pathlib import Path

import pytest

from invoice_engine.golden_patterns import GOLDEN_PATTERNS
from invoice_engine.main import main

_ENV_VARS = (
    "LOG_LEVEL",
    "DEFAULT_CURRENCY",
    "WORKER_POOL_SIZE",
    "HEADER_SCAN_LINES",
    "EXTRACTION_TIMEOUT_SECONDS",
    "MAX_PATTERN_LENGTH",
    "SEED_GOLDEN_PATTERNS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("PATTERN_DB_PATH", str(tmp_path / "data" / "patterns.db"))
    monkeypatch.setenv("USAGE_LOG_PATH", str(tmp_path / "logs" / "pattern_usage.jsonl"))
    monkeypatch.setenv("FAILURE_LOG_PATH", str(tmp_path / "logs" / "failed_extractions.jsonl"))
    monkeypatch.setenv("METRICS_PATH", str(tmp_path / "logs" / "metrics.jsonl"))


def test_seed_inserts_once(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["seed"]) == 0
    assert json.loads(capsys.readouterr().out) == {"inserted": len(GOLDEN_PATTERNS)}

    assert main(["seed"]) == 0
    assert json.loads(capsys.readouterr().out) == {"inserted": 0}


def test_extract_prints_envelope(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, sample_invoice: str
) -> None:
    text_file = tmp_path / "invoice.txt"
    text_file.write_text(sample_invoice, encoding="utf-8")

    code = main(["extract", str(text_file), "--sender", "billing@acme.com"])
    envelope = json.loads(capsys.readouterr().out)

    assert code == 0
    assert envelope["state"] == "CLASSIFIED"
    assert envelope["data"]["invoice_number"] == "INV-3337"
    assert envelope["sender_email"] == "billing@acme.com"
    assert (tmp_path / "logs" / "pattern_usage.jsonl").exists()


def test_test_pattern_exit_codes(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["test-pattern", "--regex", r"INV-(\d+)", "--sample", "Ref INV-42"]) == 0
    assert json.loads(capsys.readouterr().out)["captured_value"] == "42"

    assert main(["test-pattern", "--regex", "([", "--sample", "x"]) == 2
    assert json.loads(capsys.readouterr().out)["is_valid"] is False


def test_stats_reports_empty_store(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_patterns"] == 0
    assert stats["golden_status"] == "INCOMPLETE"


def test_invalid_setting_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_POOL_SIZE", "zero")
    with pytest.raises(ValueError, match="WORKER_POOL_SIZE"):
        main(["stats"])
