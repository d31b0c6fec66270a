# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Polling of long-running remote jobs.

This module provides:
- PollSchedule: Immutable per-attempt wait schedule
- JobPoller: Submit-to-terminal state machine driven by a schedule
"""

from .poller import JobPoller
from .schedule import DEFAULT_POLL_DELAYS, PollSchedule

__all__ = [
    "DEFAULT_POLL_DELAYS",
    "JobPoller",
    "PollSchedule",
]
