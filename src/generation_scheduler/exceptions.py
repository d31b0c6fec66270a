# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the generation scheduler.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from GenerationSchedulerError, making it easy to catch
every scheduler-related failure with a single except clause.

Only ProviderRateLimitedError is ever retried by the scheduler itself; every
other error in this module rejects the caller's request.
"""


class GenerationSchedulerError(Exception):
    """Base exception for all generation scheduler errors.

    Example:
        try:
            image = await scheduler.submit_request(payload)
        except GenerationSchedulerError as e:
            logger.error(f"Generation failed: {e}")
    """

    pass


class ConfigurationError(GenerationSchedulerError):
    """Raised when the scheduler or its provider cannot be used as configured.

    This covers invalid wiring (for example a provider that does not expose
    ``submit``/``poll_status``) and providers reporting themselves unavailable,
    typically because a credential is missing. Requests failing with this
    error are rejected immediately and are never queued.

    Example:
        try:
            await scheduler.submit_request(payload)
        except ConfigurationError:
            return {"success": False, "error": "Image generation is not configured"}
    """

    pass


class ProviderRateLimitedError(GenerationSchedulerError):
    """Raised when the remote provider rejected a call with its own rate limit.

    Providers may raise this directly to signal a 429 with a known retry hint.
    The scheduler absorbs it (re-queueing the request) unless the hint exceeds
    the configured ``max_retry_wait``, in which case it reaches the caller.

    Attributes:
        retry_after: Seconds the provider asked us to wait. May be None when
            the provider gave no hint.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderFailureError(GenerationSchedulerError):
    """Raised when a remote job reached a terminal failure.

    Either the provider reported the job as failed, or the final status query
    of the polling schedule itself failed. The scheduler never retries these;
    whether to resubmit is the caller's decision.

    Attributes:
        job_id: The provider job identifier, when one was assigned.
        reason: Provider supplied failure reason, if any.
        attempts: Number of status queries made before failing.
        elapsed: Seconds between submission and the failure.
    """

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        reason: str | None = None,
        attempts: int | None = None,
        elapsed: float | None = None,
    ):
        super().__init__(message)
        self.job_id = job_id
        self.reason = reason
        self.attempts = attempts
        self.elapsed = elapsed


class PollTimeoutError(GenerationSchedulerError):
    """Raised when the polling schedule is exhausted without a terminal state.

    Kept distinct from ProviderFailureError: the job may still complete
    remotely, so callers can choose to resubmit or check back later.

    Attributes:
        job_id: The provider job identifier.
        elapsed: Seconds spent polling.
        attempts: Number of status queries made.
    """

    def __init__(self, job_id: str, elapsed: float, attempts: int):
        super().__init__(
            f"Job {job_id} did not complete within {elapsed:.0f}s "
            f"({attempts} attempts)"
        )
        self.job_id = job_id
        self.elapsed = elapsed
        self.attempts = attempts


class QueueCancelledError(GenerationSchedulerError):
    """Raised for queued requests rejected by an administrative clear or shutdown.

    Attributes:
        reason: Why the queue was cleared.
        request_id: Identifier of the cancelled request, when known.
    """

    def __init__(self, reason: str, request_id: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.request_id = request_id


class QueueOverflowError(GenerationSchedulerError):
    """Raised when the request queue is full and cannot accept more requests.

    This is a backpressure mechanism: the request is refused up front rather
    than accepted and dropped later.

    Attributes:
        queue_size: Size of the queue when the request was refused.

    Example:
        try:
            await scheduler.submit_request(payload)
        except QueueOverflowError:
            raise HTTPException(status_code=503, detail="Service overloaded")
    """

    def __init__(self, message: str, queue_size: int | None = None):
        super().__init__(message)
        self.queue_size = queue_size


__all__ = [
    "ConfigurationError",
    "GenerationSchedulerError",
    "PollTimeoutError",
    "ProviderFailureError",
    "ProviderRateLimitedError",
    "QueueCancelledError",
    "QueueOverflowError",
]
