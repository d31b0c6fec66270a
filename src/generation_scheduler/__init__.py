# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Generation Scheduler - Rate-limited dispatch of long-running generation jobs.

This library schedules calls to remote generation APIs (image generation and
similar) that start a job, then have to be polled until the job finishes.

Key Features:
    - Sliding-window admission (at most N job starts per window)
    - FIFO queueing of excess requests; no request is ever dropped
    - Automatic re-queueing when the provider answers with its own rate limit
    - Fixed, configurable polling schedule with a bounded number of attempts
    - Status snapshots and Prometheus metrics

Quick Start:
    >>> from generation_scheduler import PollResult, create_scheduler
    >>>
    >>> class MyProvider:
    ...     async def submit(self, request_input) -> str:
    ...         return await api.create_task(request_input)
    ...     async def poll_status(self, job_id: str) -> PollResult:
    ...         task = await api.get_task(job_id)
    ...         return PollResult.from_status_code(task.status, result=task.url)
    >>>
    >>> scheduler = create_scheduler(MyProvider(), max_per_window=5)
    >>> async with scheduler:
    ...     image_url = await scheduler.submit_request({"prompt": "a red fox"})

Main Exports:
    - Scheduler, create_scheduler: Core scheduling components
    - SchedulerConfig: Configuration options
    - GenerationProvider: Protocol for remote providers
    - PollResult, PollSchedule: Status interpretation and polling schedule
    - ErrorClassifier: Provider rate-limit detection

Version: 1.0.0
"""

__version__ = "1.0.0"

from .exceptions import (
    ConfigurationError,
    GenerationSchedulerError,
    PollTimeoutError,
    ProviderFailureError,
    ProviderRateLimitedError,
    QueueCancelledError,
    QueueOverflowError,
)
from .observability import (
    UnifiedMetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from .polling import DEFAULT_POLL_DELAYS, JobPoller, PollSchedule
from .protocols import ErrorClassifierProtocol, GenerationProvider
from .providers import (
    ErrorClassification,
    ErrorClassifier,
    ErrorKind,
    RateLimitSignal,
)
from .scheduler import (
    RateWindow,
    RequestQueue,
    Scheduler,
    SchedulerConfig,
    create_scheduler,
)
from .types import (
    JobHandle,
    JobState,
    PollResult,
    PollState,
    QueuedRequest,
    RequestPriority,
    SchedulerStatus,
)

__all__ = [
    "DEFAULT_POLL_DELAYS",
    "ConfigurationError",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorClassifierProtocol",
    "ErrorKind",
    "GenerationProvider",
    "GenerationSchedulerError",
    "JobHandle",
    "JobPoller",
    "JobState",
    "PollResult",
    "PollSchedule",
    "PollState",
    "PollTimeoutError",
    "ProviderFailureError",
    "ProviderRateLimitedError",
    "QueueCancelledError",
    "QueueOverflowError",
    "QueuedRequest",
    "RateLimitSignal",
    "RateWindow",
    "RequestPriority",
    "RequestQueue",
    "Scheduler",
    "SchedulerConfig",
    "SchedulerStatus",
    "UnifiedMetricsCollector",
    "__version__",
    "create_scheduler",
    "get_metrics_collector",
    "reset_metrics_collector",
]
