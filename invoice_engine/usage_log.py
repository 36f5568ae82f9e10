from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from schemas.extraction_schema import FieldExtraction, RuleUsage


class UsageEventLog:
    """Append-only record of which rules produced field values.

    Nothing is counted in place; ``summary`` folds the events on every read.
    """

    def __init__(self, file_path: str | Path = "logs/pattern_usage.jsonl") -> None:
        self._path = Path(file_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, extraction_id: str, extractions: list[FieldExtraction] | tuple[FieldExtraction, ...]) -> int:
        now = datetime.now(timezone.utc).isoformat()
        lines: list[str] = []
        for item in extractions:
            if item.rule_id is None:
                continue
            event = {
                "recorded_at_utc": now,
                "extraction_id": extraction_id,
                "rule_id": item.rule_id,
                "rule_name": item.rule_name,
                "category": item.category.value if item.category else None,
                "field_name": item.field_name,
                "confidence": round(item.confidence, 4),
            }
            lines.append(json.dumps(event, ensure_ascii=True))
        if not lines:
            return 0
        with self._lock:
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write("\n".join(lines) + "\n")
        return len(lines)

    def list_events(self, rule_id: int | None = None) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        items: list[dict[str, Any]] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            event = json.loads(line)
            if rule_id is not None and event.get("rule_id") != rule_id:
                continue
            items.append(event)
        return items

    def has_usage(self, rule_id: int) -> bool:
        return bool(self.list_events(rule_id=rule_id))

    def summary(self) -> list[RuleUsage]:
        totals: dict[int, dict[str, Any]] = {}
        for event in self.list_events():
            rule_id = event.get("rule_id")
            if not isinstance(rule_id, int):
                continue
            entry = totals.setdefault(
                rule_id,
                {"rule_name": None, "category": None, "uses": 0, "confidence_sum": 0.0, "last_used_at": None},
            )
            entry["rule_name"] = event.get("rule_name") or entry["rule_name"]
            entry["category"] = event.get("category") or entry["category"]
            entry["uses"] += 1
            entry["confidence_sum"] += float(event.get("confidence", 0.0))
            recorded = event.get("recorded_at_utc")
            if recorded and (entry["last_used_at"] is None or recorded > entry["last_used_at"]):
                entry["last_used_at"] = recorded
        return [
            RuleUsage(
                rule_id=rule_id,
                rule_name=entry["rule_name"],
                category=entry["category"],
                uses=entry["uses"],
                average_confidence=round(entry["confidence_sum"] / entry["uses"], 4),
                last_used_at=entry["last_used_at"],
            )
            for rule_id, entry in sorted(totals.items(), key=lambda kv: (-kv[1]["uses"], kv[0]))
        ]
