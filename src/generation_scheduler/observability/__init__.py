# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability and metrics for the generation scheduler.

Classes:
    UnifiedMetricsCollector: Metrics collector with dict snapshot and Prometheus export.
    MetricDefinition: Schema of a pre-defined metric.

Functions:
    get_metrics_collector: Get the global metrics collector singleton.
    reset_metrics_collector: Reset the global metrics collector singleton.

Constants:
    All metric name constants from the constants module.
"""

from .collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    UnifiedMetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from .constants import (
    IN_FLIGHT_REQUESTS,
    JOB_DURATION_BUCKETS,
    JOB_DURATION_SECONDS,
    METRIC_PREFIX,
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

__all__ = [
    # Gauges
    "IN_FLIGHT_REQUESTS",
    # Buckets
    "JOB_DURATION_BUCKETS",
    # Histograms
    "JOB_DURATION_SECONDS",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    # Polling
    "POLL_ATTEMPTS_TOTAL",
    "POLL_TIMEOUTS_TOTAL",
    # Scheduling
    "PROVIDER_RATE_LIMITS_TOTAL",
    "QUEUE_CANCELLATIONS_TOTAL",
    "QUEUE_DEPTH",
    "QUEUE_OVERFLOWS_TOTAL",
    "QUEUE_WAIT_BUCKETS",
    "QUEUE_WAIT_SECONDS",
    "REQUESTS_ADMITTED_TOTAL",
    "REQUESTS_COMPLETED_TOTAL",
    "REQUESTS_FAILED_TOTAL",
    "REQUESTS_REQUEUED_TOTAL",
    "REQUESTS_SUBMITTED_TOTAL",
    "WINDOW_USED",
    "MetricDefinition",
    # Collector
    "UnifiedMetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
