"""Unit tests for the in-memory metrics registry."""

import threading

from metrics import MetricsRegistry


def test_snapshot_starts_empty() -> None:
    snapshot = MetricsRegistry().snapshot()

    assert snapshot["connections_opened"] == 0
    assert snapshot["active_connections"] == 0
    assert snapshot["status_counts"] == {}
    assert snapshot["body_bytes_sent_total"] == 0


def test_stream_and_latency_counters_accumulate() -> None:
    metrics = MetricsRegistry()

    metrics.record_stream("complete", 100, 0)
    metrics.record_stream("peer_disconnected", 40, 3)
    metrics.record_latency(3.0)
    metrics.record_latency(7000.0)
    metrics.record_write_error("send_failed")

    snapshot = metrics.snapshot()
    assert snapshot["stream_outcomes"] == {"complete": 1, "peer_disconnected": 1}
    assert snapshot["body_bytes_sent_total"] == 140
    assert snapshot["transient_retries_total"] == 3
    assert snapshot["latency_buckets_ms"] == {"<= 5ms": 1, "> 5000ms": 1}
    assert snapshot["write_errors_by_type"] == {"send_failed": 1}


def test_connection_counters_are_thread_safe() -> None:
    metrics = MetricsRegistry()

    def churn() -> None:
        for _ in range(1000):
            metrics.connection_opened()
            metrics.connection_closed()

    threads = [threading.Thread(target=churn) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = metrics.snapshot()
    assert snapshot["connections_opened"] == 8000
    assert snapshot["connections_closed"] == 8000
    assert snapshot["active_connections"] == 0
