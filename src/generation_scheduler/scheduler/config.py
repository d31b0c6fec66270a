# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Scheduler Configuration for the Generation Scheduler

This module provides the configuration of a scheduler instance: the sliding
window limits, the polling schedule, and provider rate-limit handling.
Configuration is fixed at construction.
"""

import math
from dataclasses import dataclass, field

from ..polling.schedule import PollSchedule


@dataclass
class SchedulerConfig:
    """
    Configuration for a generation scheduler.

    All durations are in seconds.
    """

    # === Sliding Window ===

    max_per_window: int = 5
    """Maximum downstream job starts within any trailing window."""

    window_duration: float = 60.0
    """Length of the sliding window in seconds."""

    # === Job Polling ===

    poll_schedule: PollSchedule = field(default_factory=PollSchedule)
    """Per-attempt waits for status polling. Accepts any sequence of delays."""

    # === Provider Rate Limits ===

    fallback_retry_delay: float = 60.0
    """Retry delay used when a provider rate limit carries no hint."""

    max_retry_wait: float | None = 300.0
    """Hints above this are surfaced to the caller instead of re-queued.

    None re-queues regardless of the hint.
    """

    # === Queue ===

    max_queue_size: int | None = 1000
    """Maximum number of waiting requests. None leaves the queue unbounded."""

    # === Metrics and Monitoring ===

    metrics_enabled: bool = True
    """Enable metrics collection."""

    name: str = "default"
    """Scheduler label used in logs and metric labels."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.poll_schedule, PollSchedule):
            self.poll_schedule = PollSchedule(tuple(self.poll_schedule))
        if self.max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        if not _is_positive(self.window_duration):
            raise ValueError("window_duration must be a positive number of seconds")
        if not _is_non_negative(self.fallback_retry_delay):
            raise ValueError("fallback_retry_delay must be >= 0")
        if self.max_retry_wait is not None and not _is_non_negative(
            self.max_retry_wait
        ):
            raise ValueError("max_retry_wait must be >= 0 or None")
        if self.max_queue_size is not None and self.max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1 or None")
        if not self.name:
            raise ValueError("name must be a non-empty string")


def _is_positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _is_non_negative(value: float) -> bool:
    return math.isfinite(value) and value >= 0


__all__ = ["SchedulerConfig"]
