"""
Metrics collection for Stealth Notes.

Each wallet owns one MetricsCollector; nothing here is process-global.

Series recorded by the core:
- trials_total, notes_discovered_total, notes_rejected_total, scan_errors_total
- scan_cursor_block, notes_available, notes_total
- verify_batch_ms (histogram)
- http_requests_total, http_request_duration_ms (API middleware)

Exported as JSON (get_all) or Prometheus text (to_prometheus).
"""

import threading
import time
from bisect import bisect_left
from collections import defaultdict
from contextlib import contextmanager
from typing import Any

DEFAULT_PREFIX = "stealth"

LATENCY_BOUNDS_MS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000)

METRIC_HELP = {
    "trials_total": "Trial derivations attempted against observed deposits",
    "notes_discovered_total": "Deposits recognized as addressed to this wallet",
    "notes_rejected_total": "Discovered notes refused by the note store capacity bound",
    "scan_errors_total": "Event stream failures seen by the background scanner",
    "scan_cursor_block": "Highest block processed by the scanner",
    "notes_available": "Unspent notes held in the note store",
    "notes_total": "Notes held in the note store",
    "verify_batch_ms": "Wall time of one verify_batch call",
    "http_requests_total": "HTTP requests served",
    "http_request_duration_ms": "HTTP request latency",
}


class Histogram:
    """
    Cumulative histogram over fixed upper bounds plus +Inf.

    buckets yields (upper_bound, cumulative_count) pairs.
    """

    def __init__(self, name: str, bounds: tuple[float, ...] = LATENCY_BOUNDS_MS):
        self.name = name
        self.bounds = tuple(sorted(bounds)) + (float("inf"),)
        self._counts = [0] * len(self.bounds)
        self.sum = 0.0
        self.count = 0

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        self._counts[bisect_left(self.bounds, value)] += 1

    @property
    def buckets(self) -> list[tuple[float, int]]:
        running = 0
        result = []
        for bound, count in zip(self.bounds, self._counts):
            running += count
            result.append((bound, running))
        return result

    def summary(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "sum": self.sum,
            "avg": self.sum / self.count if self.count else 0,
            "buckets": {str(bound): count for bound, count in self.buckets},
        }


def _labels_key(labels: dict[str, str] | None) -> str:
    if not labels:
        return ""
    return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


def _flatten(series: dict[str, Any]) -> Any:
    """A single unlabeled series collapses to its value."""
    if set(series) == {""}:
        return series[""]
    return dict(series)


class MetricsCollector:
    """Thread-safe counters, gauges and timing histograms with optional labels."""

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(dict)
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._counters[name][_labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get(name, {}).get(_labels_key(labels), 0)

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][_labels_key(labels)] = value

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges.get(name, {}).get(_labels_key(labels), 0.0)

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record a timing observation in milliseconds."""
        key = _labels_key(labels)
        with self._lock:
            series = self._histograms[name]
            if key not in series:
                series[key] = Histogram(name)
            series[key].observe(value_ms)

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Time the enclosed block into the named histogram."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {name: _flatten(s) for name, s in self._counters.items()},
                "gauges": {name: _flatten(s) for name, s in self._gauges.items()},
                "histograms": {
                    name: {key or "_total": hist.summary() for key, hist in series.items()}
                    for name, series in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Prometheus text exposition format."""
        prefix = self.prefix
        lines = [
            f"# HELP {prefix}_uptime_seconds Time since collector start",
            f"# TYPE {prefix}_uptime_seconds gauge",
            f"{prefix}_uptime_seconds {time.time() - self._start_time:.2f}",
        ]

        def header(name: str, kind: str) -> None:
            lines.append("")
            if name in METRIC_HELP:
                lines.append(f"# HELP {prefix}_{name} {METRIC_HELP[name]}")
            lines.append(f"# TYPE {prefix}_{name} {kind}")

        with self._lock:
            for kind, table in (("counter", self._counters), ("gauge", self._gauges)):
                for name, series in table.items():
                    header(name, kind)
                    for key, value in series.items():
                        labels = f"{{{key}}}" if key else ""
                        lines.append(f"{prefix}_{name}{labels} {value}")

            for name, series in self._histograms.items():
                header(name, "histogram")
                for key, hist in series.items():
                    label_head = f"{key}," if key else ""
                    for bound, count in hist.buckets:
                        le = "+Inf" if bound == float("inf") else bound
                        lines.append(f'{prefix}_{name}_bucket{{{label_head}le="{le}"}} {count}')
                    labels = f"{{{key}}}" if key else ""
                    lines.append(f"{prefix}_{name}_sum{labels} {hist.sum:.2f}")
                    lines.append(f"{prefix}_{name}_count{labels} {hist.count}")

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()
