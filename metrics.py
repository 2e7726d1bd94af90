"""Thread-safe in-memory counters for served connections."""

from __future__ import annotations

import threading
from collections import Counter

LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections_opened = 0
        self._connections_closed = 0
        self._active_connections = 0
        self._status_counts: Counter[str] = Counter()
        self._request_kinds: Counter[str] = Counter()
        self._stream_outcomes: Counter[str] = Counter()
        self._latency_buckets: Counter[str] = Counter()
        self._write_errors_by_type: Counter[str] = Counter()
        self._body_bytes_sent_total = 0
        self._transient_retries_total = 0

    def connection_opened(self) -> None:
        with self._lock:
            self._connections_opened += 1
            self._active_connections += 1

    def connection_closed(self) -> None:
        with self._lock:
            self._connections_closed += 1
            self._active_connections = max(0, self._active_connections - 1)

    def record_request_kind(self, kind: str) -> None:
        with self._lock:
            self._request_kinds[kind] += 1

    def record_response(self, status_code: int) -> None:
        with self._lock:
            self._status_counts[str(status_code)] += 1

    def record_stream(self, outcome: str, bytes_sent: int, transient_retries: int) -> None:
        with self._lock:
            self._stream_outcomes[outcome] += 1
            self._body_bytes_sent_total += bytes_sent
            self._transient_retries_total += transient_retries

    def record_write_error(self, error_type: str) -> None:
        with self._lock:
            self._write_errors_by_type[error_type] += 1

    def record_latency(self, duration_ms: float) -> None:
        with self._lock:
            self._latency_buckets[self._bucket_label(duration_ms)] += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "connections_opened": self._connections_opened,
                "connections_closed": self._connections_closed,
                "active_connections": self._active_connections,
                "status_counts": dict(self._status_counts),
                "request_kinds": dict(self._request_kinds),
                "stream_outcomes": dict(self._stream_outcomes),
                "latency_buckets_ms": dict(self._latency_buckets),
                "write_errors_by_type": dict(self._write_errors_by_type),
                "body_bytes_sent_total": self._body_bytes_sent_total,
                "transient_retries_total": self._transient_retries_total,
            }

    def _bucket_label(self, duration_ms: float) -> str:
        for limit in LATENCY_BUCKETS_MS:
            if duration_ms <= limit:
                return f"<= {limit}ms"
        return "> 5000ms"
