from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict
from threading import Lock
from typing import Deque, Dict, List

from .models import FetchResult, MetricsSnapshot


class MetricsCollector:
    """Collector for fetch telemetry.

    Records FetchResult events and produces aggregated MetricsSnapshot
    objects over configurable sliding time windows."""

    def __init__(self, maxlen: int = 10000) -> None:
        self._lock = Lock()
        self._events: Deque[tuple[float, FetchResult]] = deque(maxlen=maxlen)

    def record_result(self, result: FetchResult) -> None:
        """Record a fetch result with the current timestamp."""
        with self._lock:
            self._events.append((time.time(), result))

    def snapshot(self, window_secs: int) -> MetricsSnapshot:
        """Return aggregated metrics for events within the last window_secs seconds."""
        now = time.time()
        cutoff = now - window_secs
        with self._lock:
            events: List[FetchResult] = [e for ts, e in self._events if ts >= cutoff]
        total = len(events)
        return MetricsSnapshot(
            window_secs=window_secs,
            total_requests=total,
            success_count=sum(1 for e in events if e.success),
            timeout_count=sum(1 for e in events if e.error_type == "Timeout"),
            conn_error_count=sum(1 for e in events if e.error_type == "ConnectionError"),
            http_429_count=sum(1 for e in events if e.status_code == 429),
            http_403_count=sum(1 for e in events if e.status_code == 403),
            avg_latency_ms=(sum(e.latency_ms for e in events) / total) if total else 0.0,
            timestamp=now,
        )

    def export_json(self) -> List[Dict]:
        """Export all recorded events as a list of dictionaries."""
        with self._lock:
            return [{"timestamp": ts, **asdict(e)} for ts, e in self._events]
