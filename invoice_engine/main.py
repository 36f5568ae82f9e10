from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from invoice_engine.config import Settings, load_dotenv
from invoice_engine.logger import configure_logging
from invoice_engine.orchestrator import build_runtime
from invoice_engine.pattern_registry import PatternRegistry
from invoice_engine.pattern_store import PatternStore


def run_extract(settings: Settings, text_path: str, subject: str | None, sender: str | None) -> int:
    raw_text = Path(text_path).read_text(encoding="utf-8")
    runtime = build_runtime(settings)
    try:
        envelope = runtime.orchestrator.extract(raw_text, email_subject=subject, sender_email=sender)
    finally:
        runtime.close()
    print(envelope.model_dump_json(indent=2))
    return 1 if envelope.status == "FAILED" else 0


def run_seed(settings: Settings) -> int:
    registry = PatternRegistry(PatternStore(settings.pattern_db_path), max_pattern_length=settings.max_pattern_length)
    inserted = registry.seed_if_empty()
    logging.getLogger(__name__).info("Seed inserted %d golden patterns", inserted)
    print(json.dumps({"inserted": inserted}))
    return 0


def run_test_pattern(settings: Settings, regex: str, sample: str, flags: str | None) -> int:
    registry = PatternRegistry(PatternStore(settings.pattern_db_path), max_pattern_length=settings.max_pattern_length)
    result = registry.test(regex, flags, sample)
    print(result.model_dump_json(indent=2))
    return 0 if result.is_valid else 2


def run_stats(settings: Settings) -> int:
    registry = PatternRegistry(PatternStore(settings.pattern_db_path), max_pattern_length=settings.max_pattern_length)
    print(registry.statistics().model_dump_json(indent=2))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Invoice field extraction engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Extract fields from a plain-text invoice")
    extract.add_argument("text_file", help="Path to the invoice text")
    extract.add_argument("--subject", default=None, help="Email subject the invoice arrived with")
    extract.add_argument("--sender", default=None, help="Sender email address")

    subparsers.add_parser("seed", help="Insert the golden patterns into an empty store")

    test_pattern = subparsers.add_parser("test-pattern", help="Try a regex against sample text")
    test_pattern.add_argument("--regex", required=True)
    test_pattern.add_argument("--sample", required=True)
    test_pattern.add_argument("--flags", default=None)

    subparsers.add_parser("stats", help="Print pattern registry statistics")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    if args.command == "extract":
        return run_extract(settings, args.text_file, args.subject, args.sender)
    if args.command == "seed":
        return run_seed(settings)
    if args.command == "test-pattern":
        return run_test_pattern(settings, args.regex, args.sample, args.flags)
    if args.command == "stats":
        return run_stats(settings)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
