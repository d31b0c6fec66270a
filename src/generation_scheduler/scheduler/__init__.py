# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Scheduler components for the generation scheduler.

This module provides:
- Scheduler: Window admission, queue draining and provider rate-limit retries
- SchedulerConfig: Configuration fixed at construction
- RateWindow: Sliding-window admission counter
- RequestQueue: Two-lane FIFO queue of waiting requests
- create_scheduler: Factory applying keyword overrides to a config
"""

from .config import SchedulerConfig
from .queue import RequestQueue
from .scheduler import CLEAR_QUEUE_REASON, SHUTDOWN_REASON, Scheduler, create_scheduler
from .window import RateWindow

__all__ = [
    "CLEAR_QUEUE_REASON",
    "SHUTDOWN_REASON",
    "RateWindow",
    "RequestQueue",
    "Scheduler",
    "SchedulerConfig",
    "create_scheduler",
]
