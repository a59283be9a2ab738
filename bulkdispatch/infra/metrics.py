# bulkdispatch/infra/metrics.py
"""
In-process metrics for the dispatch service.

Three kinds, keyed as ``name{label=value,...}`` (labels sorted):

- counters:   monotonically increasing (``dispatch_sent_total``)
- gauges:     last value set (``dispatch_in_progress``, ``observers_connected``)
- histograms: rolling window of observations (``transport_send_seconds``)

Exposed as JSON by ``GET /metrics``.
"""
from __future__ import annotations
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Dict

from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

# Histogram stats cover the most recent observations only
HISTOGRAM_WINDOW = 1000


class Histogram:
    """Rolling window of observed values plus a lifetime count."""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self.values: deque[float] = deque(maxlen=window)
        self.count = 0

    def observe(self, value: float) -> None:
        self.values.append(value)
        self.count += 1

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0}

        window = sorted(self.values)
        size = len(window)

        def percentile(p: float) -> float:
            return window[min(int(size * p), size - 1)]

        return {
            "count": self.count,
            "min": window[0],
            "max": window[-1],
            "avg": sum(window) / size,
            "p50": percentile(0.50),
            "p95": percentile(0.95),
        }


class MetricsCollector:
    """Thread-safe registry of counters, gauges and histograms."""

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += amount

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_metrics(self) -> dict:
        """Snapshot of every metric."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {k: v.get_stats() for k, v in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def set_gauge(name: str, value: float, **labels) -> None:
    _metrics.set_gauge(name, value, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Time a block into a histogram (monotonic clock)."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            observe_histogram(self.metric_name, time.monotonic() - self.start_time, **self.labels)


class DispatchMetrics:
    """Named metrics of the dispatch pipeline"""

    @staticmethod
    def session_started() -> None:
        set_gauge("dispatch_in_progress", 1)

    @staticmethod
    def session_finished(outcome: str) -> None:
        inc_counter("dispatch_sessions_total", outcome=outcome)
        set_gauge("dispatch_in_progress", 0)

    @staticmethod
    def recipient_sent(transport: str) -> None:
        inc_counter("dispatch_sent_total", transport=transport)

    @staticmethod
    def recipient_failed(transport: str, reason: str) -> None:
        inc_counter("dispatch_failed_total", transport=transport, reason=reason)

    @staticmethod
    def store_error(operation: str) -> None:
        inc_counter("store_errors_total", operation=operation)

    @staticmethod
    def observers_connected(count: int) -> None:
        set_gauge("observers_connected", count)

    @staticmethod
    def track_send_time(transport: str) -> Timer:
        return Timer("transport_send_seconds", transport=transport)
