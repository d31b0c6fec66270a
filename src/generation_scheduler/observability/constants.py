# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `generation_scheduler_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`
    - Gauges use present-tense descriptive names

Label Best Practices:
    To prevent label cardinality explosion, use only:
    - `scheduler` - Scheduler name from its config (categorical)
    - `path` - Admission path (enum: immediate, queued)
    - `reason` - Failure reason (enum: provider_failure, poll_timeout,
      rate_limited, cancelled, error)
    - `outcome` - Poll attempt outcome (enum: pending, done, failed,
      unknown, error)

    NEVER use request ids or job ids as label values.
"""


# =============================================================================
# Global Prefix
# =============================================================================

METRIC_PREFIX = "generation_scheduler"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Scheduling Metrics (scheduler/scheduler.py)
# =============================================================================

REQUESTS_SUBMITTED_TOTAL = f"{METRIC_PREFIX}_requests_submitted_total"
"""Total requests handed to submit_request."""

REQUESTS_ADMITTED_TOTAL = f"{METRIC_PREFIX}_requests_admitted_total"
"""Total admissions against the rate window, by path."""

REQUESTS_COMPLETED_TOTAL = f"{METRIC_PREFIX}_requests_completed_total"
"""Total requests whose job completed successfully."""

REQUESTS_FAILED_TOTAL = f"{METRIC_PREFIX}_requests_failed_total"
"""Total requests rejected with an error, by reason."""

PROVIDER_RATE_LIMITS_TOTAL = f"{METRIC_PREFIX}_provider_rate_limits_total"
"""Total downstream failures classified as provider rate limiting."""

REQUESTS_REQUEUED_TOTAL = f"{METRIC_PREFIX}_requests_requeued_total"
"""Total requests re-queued at the front after a provider rate limit."""

QUEUE_CANCELLATIONS_TOTAL = f"{METRIC_PREFIX}_queue_cancellations_total"
"""Total queued requests rejected by an administrative clear or shutdown."""

QUEUE_OVERFLOWS_TOTAL = f"{METRIC_PREFIX}_queue_overflows_total"
"""Total requests refused because the queue was full."""


# =============================================================================
# Polling Metrics (polling/poller.py)
# =============================================================================

POLL_ATTEMPTS_TOTAL = f"{METRIC_PREFIX}_poll_attempts_total"
"""Total status queries, by outcome."""

POLL_TIMEOUTS_TOTAL = f"{METRIC_PREFIX}_poll_timeouts_total"
"""Total jobs that exhausted their polling schedule."""


# =============================================================================
# Gauges (real-time operational state)
# =============================================================================

QUEUE_DEPTH = f"{METRIC_PREFIX}_queue_depth"
"""Requests waiting for a window slot."""

WINDOW_USED = f"{METRIC_PREFIX}_window_used"
"""Admissions currently counted in the sliding window."""

IN_FLIGHT_REQUESTS = f"{METRIC_PREFIX}_in_flight_requests"
"""Requests currently submitted or polling."""


# =============================================================================
# Histograms
# =============================================================================

JOB_DURATION_SECONDS = f"{METRIC_PREFIX}_job_duration_seconds"
"""Time from downstream submit to terminal state."""

QUEUE_WAIT_SECONDS = f"{METRIC_PREFIX}_queue_wait_seconds"
"""Time a queued request waited before dispatch."""


# Generation jobs take tens of seconds; queue waits can reach minutes
JOB_DURATION_BUCKETS = [1.0, 5.0, 15.0, 30.0, 45.0, 60.0, 90.0, 120.0, 300.0]
QUEUE_WAIT_BUCKETS = [0.1, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0]


__all__ = [
    "IN_FLIGHT_REQUESTS",
    "JOB_DURATION_BUCKETS",
    "JOB_DURATION_SECONDS",
    "METRIC_PREFIX",
    "POLL_ATTEMPTS_TOTAL",
    "POLL_TIMEOUTS_TOTAL",
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
]
