# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Type definitions and constants."""

from .job import (
    DEFAULT_STATUS_CODES,
    JobHandle,
    JobState,
    PollResult,
    PollState,
)
from .queue import QueuedRequest, RequestPriority
from .status import SchedulerStatus

__all__ = [
    "DEFAULT_STATUS_CODES",
    # Job types
    "JobHandle",
    "JobState",
    "PollResult",
    "PollState",
    # Queue types
    "QueuedRequest",
    "RequestPriority",
    # Status
    "SchedulerStatus",
]
