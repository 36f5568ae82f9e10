from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(name: str, default: int, *, minimum: int, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw}") from exc
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValueError(f"{name} must be {bounds}")
    return value


def _parse_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    pattern_db_path: str = "data/patterns.db"
    usage_log_path: str = "logs/pattern_usage.jsonl"
    failure_log_path: str = "logs/failed_extractions.jsonl"
    metrics_path: str = "logs/metrics.jsonl"
    worker_pool_size: int = 4
    header_scan_lines: int = 15
    extraction_timeout_seconds: float = 10.0
    max_pattern_length: int = 500
    default_currency: str = "USD"
    seed_golden_patterns: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

        default_currency = os.getenv("DEFAULT_CURRENCY", "USD").strip().upper()
        if len(default_currency) != 3 or not default_currency.isalpha():
            raise ValueError("DEFAULT_CURRENCY must be a three-letter currency code")

        pattern_db_path = os.getenv("PATTERN_DB_PATH", "data/patterns.db").strip()
        if not pattern_db_path:
            raise ValueError("PATTERN_DB_PATH must not be empty")

        return cls(
            log_level=log_level,
            pattern_db_path=pattern_db_path,
            usage_log_path=os.getenv("USAGE_LOG_PATH", "logs/pattern_usage.jsonl"),
            failure_log_path=os.getenv("FAILURE_LOG_PATH", "logs/failed_extractions.jsonl"),
            metrics_path=os.getenv("METRICS_PATH", "logs/metrics.jsonl"),
            worker_pool_size=_parse_int("WORKER_POOL_SIZE", 4, minimum=1, maximum=32),
            header_scan_lines=_parse_int("HEADER_SCAN_LINES", 15, minimum=1),
            extraction_timeout_seconds=_parse_positive_float("EXTRACTION_TIMEOUT_SECONDS", 10.0),
            max_pattern_length=_parse_int("MAX_PATTERN_LENGTH", 500, minimum=10),
            default_currency=default_currency,
            seed_golden_patterns=_parse_bool(os.getenv("SEED_GOLDEN_PATTERNS"), default=True),
        )


def load_dotenv(path: str | Path = ".env") -> None:
    env_path = Path(path)
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        key, value = entry.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        os.environ.setdefault(key, value)
