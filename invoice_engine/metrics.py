from __future__ import annotations

import json
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

LATENCY_WINDOW = 1000


@dataclass
class MetricsCollector:
    counters: Counter[str] = field(default_factory=Counter)
    # p95 covers the most recent runs only
    latencies_ms: deque[int] = field(default_factory=lambda: deque(maxlen=LATENCY_WINDOW))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self.counters[name] += value

    def record_extraction(self, status: str, recommendation: str, latency_ms: int) -> None:
        with self._lock:
            self.counters["extractions_total"] += 1
            self.counters[f"status_{status.lower()}_total"] += 1
            self.counters[f"recommendation_{recommendation.lower()}_total"] += 1
            if status == "FAILED":
                self.counters["extractions_failed_total"] += 1
            self.latencies_ms.append(latency_ms)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(self.counters)
            ordered = sorted(self.latencies_ms)
        p95 = 0
        if ordered:
            idx = int(0.95 * (len(ordered) - 1))
            p95 = ordered[idx]
        return {
            "extractions_total": counters.get("extractions_total", 0),
            "failure_total": counters.get("extractions_failed_total", 0),
            "by_status": {
                name[len("status_") : -len("_total")].upper(): value
                for name, value in sorted(counters.items())
                if name.startswith("status_")
            },
            "by_recommendation": {
                name[len("recommendation_") : -len("_total")].upper(): value
                for name, value in sorted(counters.items())
                if name.startswith("recommendation_")
            },
            "usage_events_total": counters.get("usage_events_total", 0),
            "latency_p95_ms": p95,
        }


class JsonlMetricsSink:
    def __init__(self, path: str | Path = "logs/metrics.jsonl") -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        payload = {
            "recorded_at_utc": datetime.now(timezone.utc).isoformat(),
            **event,
        }
        with self._lock:
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(payload, ensure_ascii=True) + "\n")
