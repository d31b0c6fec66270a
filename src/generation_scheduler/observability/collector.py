# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Unified metrics collector keeping a dict snapshot and Prometheus metrics.

This module provides the UnifiedMetricsCollector class that serves as the
single source of truth for all metrics in the generation scheduler.

Features:
    1. Thread-safe counter/gauge/histogram operations
    2. Prometheus metric registration on first use
    3. Dict-based snapshot for JSON export
    4. Label cardinality protection (max 1000 unique combinations per metric)
    5. Optional HTTP server for Prometheus scraping

Usage:
    >>> from generation_scheduler.observability.collector import get_metrics_collector
    >>> collector = get_metrics_collector()
    >>> collector.inc_counter('generation_scheduler_requests_submitted_total',
    ...                       labels={'scheduler': 'images'})
    >>> metrics = collector.get_metrics()
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, ClassVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from .constants import (
    IN_FLIGHT_REQUESTS,
    JOB_DURATION_BUCKETS,
    JOB_DURATION_SECONDS,
    POLL_ATTEMPTS_TOTAL,
    POLL_TIMEOUTS_TOTAL,
    PROVIDER_RATE_LIMITS_TOTAL,
    QUEUE_CANCELLATIONS_TOTAL,
    QUEUE_DEPTH,
    QUEUE_OVERFLOWS_TOTAL,
    QUEUE_WAIT_BUCKETS,
    QUEUE_WAIT_SECONDS,
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_REQUEUED_TOTAL,
    REQUESTS_SUBMITTED_TOTAL,
    WINDOW_USED,
)

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """
    Definition for a metric that can be instantiated.

    This dataclass defines the schema for metrics, including their type,
    description, labels, and histogram buckets.
    """

    name: str
    metric_type: str  # 'counter', 'gauge', 'histogram'
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    # === Scheduling Counters ===
    REQUESTS_SUBMITTED_TOTAL: MetricDefinition(
        REQUESTS_SUBMITTED_TOTAL,
        "counter",
        "Total requests submitted to the scheduler",
        ("scheduler",),
    ),
    REQUESTS_ADMITTED_TOTAL: MetricDefinition(
        REQUESTS_ADMITTED_TOTAL,
        "counter",
        "Total admissions against the rate window",
        ("scheduler", "path"),
    ),
    REQUESTS_COMPLETED_TOTAL: MetricDefinition(
        REQUESTS_COMPLETED_TOTAL,
        "counter",
        "Total requests completed successfully",
        ("scheduler",),
    ),
    REQUESTS_FAILED_TOTAL: MetricDefinition(
        REQUESTS_FAILED_TOTAL,
        "counter",
        "Total requests failed",
        ("scheduler", "reason"),
    ),
    PROVIDER_RATE_LIMITS_TOTAL: MetricDefinition(
        PROVIDER_RATE_LIMITS_TOTAL,
        "counter",
        "Total provider rate limit responses",
        ("scheduler",),
    ),
    REQUESTS_REQUEUED_TOTAL: MetricDefinition(
        REQUESTS_REQUEUED_TOTAL,
        "counter",
        "Total requests re-queued after a provider rate limit",
        ("scheduler",),
    ),
    QUEUE_CANCELLATIONS_TOTAL: MetricDefinition(
        QUEUE_CANCELLATIONS_TOTAL,
        "counter",
        "Total queued requests cancelled",
        ("scheduler",),
    ),
    QUEUE_OVERFLOWS_TOTAL: MetricDefinition(
        QUEUE_OVERFLOWS_TOTAL,
        "counter",
        "Total requests refused by a full queue",
        ("scheduler",),
    ),
    # === Polling Counters ===
    POLL_ATTEMPTS_TOTAL: MetricDefinition(
        POLL_ATTEMPTS_TOTAL,
        "counter",
        "Total job status queries",
        ("scheduler", "outcome"),
    ),
    POLL_TIMEOUTS_TOTAL: MetricDefinition(
        POLL_TIMEOUTS_TOTAL,
        "counter",
        "Total jobs that exhausted their polling schedule",
        ("scheduler",),
    ),
    # === Gauges ===
    QUEUE_DEPTH: MetricDefinition(
        QUEUE_DEPTH,
        "gauge",
        "Requests waiting for a window slot",
        ("scheduler",),
    ),
    WINDOW_USED: MetricDefinition(
        WINDOW_USED,
        "gauge",
        "Admissions counted in the sliding window",
        ("scheduler",),
    ),
    IN_FLIGHT_REQUESTS: MetricDefinition(
        IN_FLIGHT_REQUESTS,
        "gauge",
        "Requests currently submitted or polling",
        ("scheduler",),
    ),
    # === Histograms ===
    JOB_DURATION_SECONDS: MetricDefinition(
        JOB_DURATION_SECONDS,
        "histogram",
        "Time from job submission to terminal state",
        ("scheduler",),
        buckets=JOB_DURATION_BUCKETS,
    ),
    QUEUE_WAIT_SECONDS: MetricDefinition(
        QUEUE_WAIT_SECONDS,
        "histogram",
        "Time a queued request waited before dispatch",
        ("scheduler",),
        buckets=QUEUE_WAIT_BUCKETS,
    ),
}


class UnifiedMetricsCollector:
    """
    Metrics collector supporting both dict snapshots and Prometheus export.

    Thread Safety:
        All dict updates use an RLock. The lock is reentrant to allow nested
        calls from callbacks.

    Cardinality Protection:
        A maximum of MAX_LABEL_COMBINATIONS unique label combinations are
        tracked per metric; further combinations are dropped with a warning.

    Example:
        >>> collector = UnifiedMetricsCollector(registry=CollectorRegistry())
        >>> collector.inc_counter(REQUESTS_SUBMITTED_TOTAL, labels={'scheduler': 'x'})
        >>> collector.get_metrics()["counters"]
        {'generation_scheduler_requests_submitted_total': {'scheduler=x': 1.0}}
    """

    MAX_LABEL_COMBINATIONS: ClassVar[int] = 1000
    MAX_HISTOGRAM_OBSERVATIONS: ClassVar[int] = 10000

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Whether to mirror updates to Prometheus metrics
            registry: Prometheus registry to register into (default: global
                REGISTRY). Tests pass a private CollectorRegistry.
        """
        self._enable_prometheus = enable_prometheus
        self._registry = registry if registry is not None else REGISTRY

        self._counters: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._gauges: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )

        self._lock = threading.RLock()
        self._prom_metrics: dict[str, Any] = {}
        self._label_combinations: dict[str, set[str]] = defaultdict(set)
        self._server_running = False

        logger.debug(
            f"UnifiedMetricsCollector initialized "
            f"(prometheus={'enabled' if self._enable_prometheus else 'disabled'})"
        )

    def _labels_to_key(self, labels: dict[str, str] | None) -> str:
        """Convert labels dict to a stable string key."""
        if not labels:
            return ""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _check_cardinality(self, name: str, label_key: str) -> bool:
        """Return True if this label combination may be recorded."""
        if label_key in self._label_combinations[name]:
            return True
        if len(self._label_combinations[name]) >= self.MAX_LABEL_COMBINATIONS:
            logger.warning(
                f"Cardinality limit ({self.MAX_LABEL_COMBINATIONS}) reached "
                f"for metric {name}. Dropping label combination: {label_key}"
            )
            return False
        self._label_combinations[name].add(label_key)
        return True

    def _get_or_create_prom_metric(
        self, name: str, metric_type: str, labels: dict[str, str] | None
    ) -> Any | None:
        """Get or lazily register the Prometheus metric backing ``name``."""
        if not self._enable_prometheus:
            return None

        with self._lock:
            if name not in self._prom_metrics:
                defn = METRIC_DEFINITIONS.get(name)
                if defn is None or defn.metric_type != metric_type:
                    # Dynamic metric: labels taken from the first update
                    defn = MetricDefinition(
                        name,
                        metric_type,
                        f"Dynamic {metric_type}: {name}",
                        tuple(sorted(labels)) if labels else (),
                    )
                try:
                    self._prom_metrics[name] = self._build_prom_metric(defn)
                except ValueError as e:
                    # Raised by prometheus_client on duplicate registration
                    logger.warning(f"Failed to create Prometheus {metric_type} {name}: {e}")
                    self._prom_metrics[name] = None

            return self._prom_metrics[name]

    def _build_prom_metric(self, defn: MetricDefinition) -> Any:
        label_names = list(defn.label_names)
        if defn.metric_type == "counter":
            return Counter(
                defn.name, defn.description, label_names, registry=self._registry
            )
        if defn.metric_type == "gauge":
            return Gauge(
                defn.name, defn.description, label_names, registry=self._registry
            )
        return Histogram(
            defn.name,
            defn.description,
            label_names,
            buckets=defn.buckets or JOB_DURATION_BUCKETS,
            registry=self._registry,
        )

    def _mirror(
        self,
        name: str,
        metric_type: str,
        labels: dict[str, str] | None,
        operation: str,
        value: float,
    ) -> None:
        """Apply ``operation`` (inc/dec/set/observe) to the Prometheus metric."""
        metric = self._get_or_create_prom_metric(name, metric_type, labels)
        if metric is None:
            return
        try:
            target = metric.labels(**labels) if labels else metric
            getattr(target, operation)(value)
        except ValueError as e:
            logger.debug(f"Prometheus {metric_type} update failed for {name}: {e}")

    # === Counter Operations ===

    def inc_counter(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter increment must be non-negative")

        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._counters[name][label_key] += value

        self._mirror(name, "counter", labels, "inc", value)

    # === Gauge Operations ===

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to a specific value."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._gauges[name][label_key] = value

        self._mirror(name, "gauge", labels, "set", value)

    def inc_gauge(
        self,
        name: str,
        value: float = 1.0,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Increment a gauge metric."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._gauges[name][label_key] += value

        self._mirror(name, "gauge", labels, "inc", value)

    def dec_gauge(
        self,
        name: str,
        value: float = 1.0,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Decrement a gauge metric."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._gauges[name][label_key] -= value

        self._mirror(name, "gauge", labels, "dec", value)

    # === Histogram Operations ===

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation in a histogram."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            observations = self._histograms[name][label_key]
            observations.append(value)
            if len(observations) > self.MAX_HISTOGRAM_OBSERVATIONS:
                del observations[: len(observations) // 2]

        self._mirror(name, "histogram", labels, "observe", value)

    # === Snapshot Operations ===

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Returns a dict suitable for JSON serialization with structure:
        {
            "counters": {"metric_name": {"label_key": value, ...}, ...},
            "gauges": {"metric_name": {"label_key": value, ...}, ...},
            "histograms": {"metric_name": {"label_key": {...}, ...}, ...}
        }
        """
        with self._lock:
            counters = {
                name: dict(label_values)
                for name, label_values in self._counters.items()
            }
            gauges = {
                name: dict(label_values) for name, label_values in self._gauges.items()
            }

            histograms: dict[str, dict[str, dict[str, Any]]] = {}
            for name, label_values in self._histograms.items():
                histograms[name] = {}
                for label_key, observations in label_values.items():
                    if observations:
                        histograms[name][label_key] = {
                            "count": len(observations),
                            "sum": sum(observations),
                            "avg": sum(observations) / len(observations),
                            "min": min(observations),
                            "max": max(observations),
                        }

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": histograms,
        }

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one counter series (0 when never incremented)."""
        with self._lock:
            return self._counters.get(name, {}).get(self._labels_to_key(labels), 0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one gauge series (0 when never set)."""
        with self._lock:
            return self._gauges.get(name, {}).get(self._labels_to_key(labels), 0.0)

    def get_flat_metrics(self) -> dict[str, Any]:
        """
        Get counters and gauges as a flat dict.

        For labeled metrics, uses format "metric_name{label=value,...}".
        """
        result: dict[str, Any] = {}

        with self._lock:
            for store in (self._counters, self._gauges):
                for name, label_values in store.items():
                    for label_key, value in label_values.items():
                        if label_key:
                            result[f"{name}{{{label_key}}}"] = value
                        else:
                            result[name] = value

        return result

    # === Lifecycle ===

    def reset(self) -> None:
        """Reset the dict snapshot. Registered Prometheus metrics are kept."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._label_combinations.clear()

        logger.debug("Metrics collector reset")

    # === Prometheus HTTP Server ===

    def start_http_server(self, host: str = "127.0.0.1", port: int = 9090) -> bool:
        """
        Start the Prometheus HTTP server for metrics scraping.

        Binds to localhost by default; pass host="0.0.0.0" explicitly for
        containerized deployments.

        Returns:
            True if the server is running, False if it failed to start
        """
        if self._server_running:
            logger.warning("Prometheus server already running")
            return True

        try:
            start_http_server(port, addr=host, registry=self._registry)
        except OSError as e:
            logger.error(f"Failed to start Prometheus server: {e}")
            return False

        self._server_running = True
        logger.info(f"Prometheus metrics server started on {host}:{port}")
        return True

    @property
    def prometheus_enabled(self) -> bool:
        return self._enable_prometheus

    @property
    def server_running(self) -> bool:
        return self._server_running


# =============================================================================
# Singleton Pattern
# =============================================================================

_global_collector: UnifiedMetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector(
    enable_prometheus: bool = True,
) -> UnifiedMetricsCollector:
    """
    Get or create the process-wide metrics collector.

    Prometheus registries are process-wide, so every scheduler in a process
    shares this collector unless one is injected explicitly.

    Args:
        enable_prometheus: Whether to enable Prometheus metrics
            (only used on first call)
    """
    global _global_collector

    if _global_collector is None:
        with _collector_lock:
            if _global_collector is None:
                _global_collector = UnifiedMetricsCollector(
                    enable_prometheus=enable_prometheus
                )

    return _global_collector


def reset_metrics_collector() -> None:
    """
    Reset the global metrics collector (mainly for testing).

    The next get_metrics_collector() call creates a fresh collector.
    """
    global _global_collector
    with _collector_lock:
        if _global_collector:
            _global_collector.reset()
        _global_collector = None


__all__ = [
    "METRIC_DEFINITIONS",
    "MetricDefinition",
    "UnifiedMetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
