"""
Tests for the metrics collector.
"""

import os
import sys
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from monitoring.metrics import Histogram, MetricsCollector
from monitoring.middleware import normalize_path


class TestCounters:
    """Tests for counter operations."""

    def test_increment(self):
        metrics = MetricsCollector()
        metrics.increment("trials_total")
        metrics.increment("trials_total", 4)
        assert metrics.get_counter("trials_total") == 5

    def test_labels_are_separate_series(self):
        metrics = MetricsCollector()
        metrics.increment("http_requests_total", labels={"status": "200"})
        metrics.increment("http_requests_total", labels={"status": "404"})
        assert metrics.get_counter("http_requests_total", labels={"status": "200"}) == 1
        assert metrics.get_counter("http_requests_total") == 0

    def test_thread_safety(self):
        metrics = MetricsCollector()

        def worker():
            for _ in range(1000):
                metrics.increment("notes_discovered_total")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert metrics.get_counter("notes_discovered_total") == 4000


class TestGaugesAndHistograms:
    """Tests for gauges and timings."""

    def test_gauge(self):
        metrics = MetricsCollector()
        metrics.set_gauge("scan_cursor_block", 42)
        assert metrics.get_gauge("scan_cursor_block") == 42
        assert metrics.get_gauge("missing") == 0.0

    def test_histogram_buckets(self):
        hist = Histogram(name="verify_batch_ms")
        hist.observe(3)
        hist.observe(700)
        assert hist.count == 2
        assert hist.sum == 703
        counts = dict(hist.buckets)
        assert counts[5] == 1
        assert counts[1000] == 2
        assert counts[float("inf")] == 2

    def test_timer_records(self):
        metrics = MetricsCollector()
        with metrics.timer("verify_batch_ms"):
            pass
        assert metrics.get_all()["histograms"]["verify_batch_ms"]["_total"]["count"] == 1


class TestExport:
    """Tests for JSON and Prometheus export."""

    def test_get_all(self):
        metrics = MetricsCollector()
        metrics.increment("trials_total", 3)
        metrics.set_gauge("notes_available", 2)
        data = metrics.get_all()
        assert data["counters"]["trials_total"] == 3
        assert data["gauges"]["notes_available"] == 2
        assert data["uptime_seconds"] >= 0

    def test_prometheus_format(self):
        metrics = MetricsCollector(prefix="stealth")
        metrics.increment("scan_errors_total")
        metrics.timing("verify_batch_ms", 12.5)
        text = metrics.to_prometheus()
        assert "# TYPE stealth_scan_errors_total counter" in text
        assert "stealth_scan_errors_total 1" in text
        assert 'stealth_verify_batch_ms_bucket{le="+Inf"} 1' in text
        assert "stealth_verify_batch_ms_count 1" in text
        assert "# HELP stealth_scan_errors_total" in text

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.increment("x")
        metrics.reset()
        assert metrics.get_counter("x") == 0


class TestNormalizePath:
    """Tests for metric path labels."""

    def test_commitment_hex_replaced(self):
        path = "/notes/0x" + "ab" * 32 + "/spent"
        assert normalize_path(path) == "/notes/:commitment/spent"

    def test_decimal_commitment_replaced(self):
        assert normalize_path("/notes/123456789012345678/spent") == "/notes/:commitment/spent"

    def test_plain_paths_kept(self):
        assert normalize_path("/scanner/status") == "/scanner/status"
        assert normalize_path("/") == "/"
