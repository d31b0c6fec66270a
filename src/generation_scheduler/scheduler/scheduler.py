# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Scheduler for rate-limited remote generation jobs.

The scheduler admits requests against a sliding window, dispatches admitted
requests to the provider (submit, then poll until terminal), and queues the
rest. A single drain loop serves the queue whenever capacity frees up.
Requests rejected by the provider's own rate limiting are re-queued ahead of
newer arrivals and retried after the provider's hint.
"""

import asyncio
import dataclasses
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from typing_extensions import Self

from ..exceptions import (
    ConfigurationError,
    GenerationSchedulerError,
    PollTimeoutError,
    ProviderFailureError,
    ProviderRateLimitedError,
    QueueCancelledError,
    QueueOverflowError,
)
from ..observability.collector import UnifiedMetricsCollector, get_metrics_collector
from ..observability.constants import (
    IN_FLIGHT_REQUESTS,
    JOB_DURATION_SECONDS,
    PROVIDER_RATE_LIMITS_TOTAL,
    QUEUE_CANCELLATIONS_TOTAL,
    QUEUE_DEPTH,
    QUEUE_OVERFLOWS_TOTAL,
    QUEUE_WAIT_SECONDS,
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_REQUEUED_TOTAL,
    REQUESTS_SUBMITTED_TOTAL,
    WINDOW_USED,
)
from ..polling.poller import JobPoller
from ..protocols.classifier import ErrorClassifierProtocol
from ..protocols.provider import GenerationProvider
from ..providers.classifier import ErrorClassifier
from ..providers.signals import ErrorClassification, RateLimitSignal
from ..types.job import JobHandle
from ..types.queue import QueuedRequest
from ..types.status import SchedulerStatus
from .config import SchedulerConfig
from .queue import RequestQueue
from .window import RateWindow

logger = logging.getLogger(__name__)

CLEAR_QUEUE_REASON = "Request cancelled due to queue clear"
SHUTDOWN_REASON = "Scheduler stopped"

# Re-check interval when the window reports a free slot that try_admit refuses
EDGE_RECHECK_DELAY = 0.001


class Scheduler:
    """
    The request scheduler for remote generation jobs.

    The `Scheduler` is responsible for:
    - Admitting requests against the sliding window (fast path).
    - Queueing requests that cannot be admitted and draining them in order.
    - Re-queueing requests rejected by the provider's own rate limit.
    - Reporting status and metrics.

    Instances are constructed explicitly; there is no global scheduler.

    Example:
        >>> scheduler = Scheduler(provider, SchedulerConfig(max_per_window=5))
        >>> async with scheduler:
        ...     image_url = await scheduler.submit_request(payload)
    """

    def __init__(
        self,
        provider: GenerationProvider,
        config: SchedulerConfig | None = None,
        classifier: ErrorClassifierProtocol | None = None,
        poller: JobPoller | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics_collector: UnifiedMetricsCollector | None = None,
    ) -> None:
        """
        Initialize the Scheduler.

        Args:
            provider: Remote generation provider (submit + poll_status)
            config: Scheduler configuration (defaults if not provided)
            classifier: Error classifier for provider failures
            poller: Job poller (built from config.poll_schedule if not provided)
            clock: Monotonic clock returning seconds
            sleep: Coroutine function used for every wait
            metrics_collector: Metrics collector (global collector if not provided)

        Raises:
            ConfigurationError: If the provider lacks submit or poll_status
        """
        for method in ("submit", "poll_status"):
            if not callable(getattr(provider, method, None)):
                raise ConfigurationError(
                    f"Provider {type(provider).__name__} does not implement {method}()"
                )

        self.provider = provider
        self.config = config or SchedulerConfig()
        self._clock = clock
        self._sleep = sleep

        self.metrics_enabled = self.config.metrics_enabled
        self.metrics_collector: UnifiedMetricsCollector | None = None
        if self.metrics_enabled:
            self.metrics_collector = metrics_collector or get_metrics_collector()

        self.window = RateWindow(
            self.config.max_per_window, self.config.window_duration, clock=clock
        )
        self.queue = RequestQueue(self.config.max_queue_size)
        self.classifier = classifier or ErrorClassifier(
            self.config.fallback_retry_delay
        )
        self.poller = poller or JobPoller(
            provider,
            self.config.poll_schedule,
            clock=clock,
            sleep=sleep,
            metrics_collector=self.metrics_collector,
            name=self.config.name,
        )

        self._labels = {"scheduler": self.config.name}
        self._draining = False
        self._drain_task: asyncio.Task[None] | None = None
        self._resume_at = 0.0
        self._wakeup = asyncio.Event()
        self._in_flight = 0
        self._closed = False

    # === Public API ===

    async def submit_request(self, request_input: Any) -> Any:
        """
        Run a generation job under the rate limit and return its result.

        The request is dispatched immediately when nothing is queued, no
        provider back-off is active and the window has room. Otherwise it waits
        in the queue until the drain loop serves it.

        Args:
            request_input: Opaque input forwarded to ``provider.submit``

        Returns:
            The completed job's result payload

        Raises:
            ConfigurationError: Provider is unavailable
            QueueOverflowError: The queue is full
            QueueCancelledError: The queue was cleared or the scheduler stopped
            ProviderFailureError: The job failed remotely
            PollTimeoutError: The job did not finish within the poll schedule
            ProviderRateLimitedError: The provider's retry hint was too long
        """
        if self._closed:
            raise GenerationSchedulerError("Scheduler is stopped")
        if not self.is_available():
            raise ConfigurationError(
                f"Provider for scheduler '{self.config.name}' is not available"
            )

        self._inc(REQUESTS_SUBMITTED_TOTAL)
        now = self._clock()

        if not self.queue and now >= self._resume_at:
            token = self.window.try_admit()
            if token is not None:
                self._inc(REQUESTS_ADMITTED_TOTAL, path="immediate")
                self._update_gauges()
                logger.info(
                    f"[{self.config.name}] Admitted request immediately "
                    f"({self.window.used}/{self.config.max_per_window} in window)"
                )
                try:
                    return await self._dispatch(request_input)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    classification = self._classify(e)
                    if classification is None or not classification.is_rate_limited:
                        self._record_failure(e)
                        raise
                    request = QueuedRequest.create(request_input, now)
                    self._defer_rate_limited(request, token, classification.signal, e)
                    return await request.future

        request = QueuedRequest.create(request_input, now)
        try:
            self.queue.enqueue(request)
        except QueueOverflowError:
            self._inc(QUEUE_OVERFLOWS_TOTAL)
            logger.warning(
                f"[{self.config.name}] Queue full, refusing request "
                f"({len(self.queue)} waiting)"
            )
            raise

        logger.info(
            f"[{self.config.name}] Queued request {request.request_id} "
            f"(position {len(self.queue)}, estimated wait {self.estimate_wait():.0f}s)"
        )
        self._update_gauges()
        self._ensure_draining()
        return await request.future

    def cancel_all_queued(self, reason: str = CLEAR_QUEUE_REASON) -> int:
        """
        Reject every queued request with QueueCancelledError.

        In-flight requests are not affected.

        Returns:
            Number of requests that were rejected
        """
        cancelled = self.queue.cancel_all(reason)
        if cancelled:
            self._inc(QUEUE_CANCELLATIONS_TOTAL, value=cancelled)
            self._inc(REQUESTS_FAILED_TOTAL, value=cancelled, reason="cancelled")
        logger.info(f"[{self.config.name}] Cleared {cancelled} queued requests: {reason}")
        self._update_gauges()
        return cancelled

    def get_status(self) -> SchedulerStatus:
        """Snapshot of window usage, queue length and next dispatch time."""
        return SchedulerStatus(
            used_in_window=self.window.used,
            max_per_window=self.config.max_per_window,
            queue_length=len(self.queue),
            can_admit_now=self._can_admit_now(),
            next_available_in_ms=_to_ms(self._dispatch_delay()),
            estimated_wait_ms=_to_ms(self.estimate_wait()),
            in_flight=self._in_flight,
            draining=self._draining,
            name=self.config.name,
        )

    def estimate_wait(self) -> float:
        """
        Rough wait in seconds before a new request would be dispatched.

        Assumes every queued request takes one window slot and that slots free
        up evenly across the window.
        """
        if self._can_admit_now():
            return 0.0
        per_slot = self.config.window_duration / self.config.max_per_window
        return max(len(self.queue) * per_slot, self._dispatch_delay())

    def is_available(self) -> bool:
        """Whether the provider is usable. Providers without a check always are."""
        check = getattr(self.provider, "is_available", None)
        if check is None:
            return True
        return bool(check())

    def is_running(self) -> bool:
        return not self._closed

    async def stop(self) -> None:
        """
        Stop the scheduler.

        Queued requests are rejected with QueueCancelledError and the drain
        loop is cancelled; a request it was dispatching is rejected as well.
        Requests dispatched on the fast path run to their own terminal state.
        """
        if self._closed:
            return
        self._closed = True

        self.cancel_all_queued(SHUTDOWN_REASON)

        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._draining = False
        self._drain_task = None
        logger.info(f"[{self.config.name}] Scheduler stopped")

    async def __aenter__(self) -> Self:
        """
        Async context manager entry.

        Example:
            async with create_scheduler(provider) as scheduler:
                result = await scheduler.submit_request(payload)
        """
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Stop the scheduler even if an exception occurred."""
        await self.stop()

    def get_metrics(self) -> dict[str, Any]:
        """
        Get current scheduler metrics.

        Returns:
            Dictionary of metrics suitable for JSON serialization
        """
        metrics: dict[str, Any] = {
            "scheduler_type": self.__class__.__name__,
            "name": self.config.name,
            "running": not self._closed,
            "draining": self._draining,
            "queue_length": len(self.queue),
            "used_in_window": self.window.used,
            "max_per_window": self.config.max_per_window,
            "in_flight": self._in_flight,
        }
        if self.metrics_collector:
            metrics["unified_metrics"] = self.metrics_collector.get_flat_metrics()
        return metrics

    # === Dispatch ===

    async def _dispatch(self, request_input: Any) -> Any:
        """Submit the job and poll it to a terminal state."""
        self._in_flight += 1
        self._gauge_delta(IN_FLIGHT_REQUESTS, 1)
        started = self._clock()
        try:
            job_id = await self.provider.submit(request_input)
            logger.info(f"[{self.config.name}] Submitted job {job_id}")
            handle = JobHandle(job_id=job_id, submitted_at=self._clock())
            result = await self.poller.poll(job_id, handle)
        finally:
            self._in_flight -= 1
            self._gauge_delta(IN_FLIGHT_REQUESTS, -1)

        if self.metrics_collector:
            self.metrics_collector.observe_histogram(
                JOB_DURATION_SECONDS, self._clock() - started, labels=self._labels
            )
        self._inc(REQUESTS_COMPLETED_TOTAL)
        return result

    def _defer_rate_limited(
        self,
        request: QueuedRequest,
        token: float,
        signal: RateLimitSignal | None,
        error: BaseException,
    ) -> None:
        """Release the admission and re-queue the request at the front."""
        self.window.release(token)
        self._inc(PROVIDER_RATE_LIMITS_TOTAL)

        retry_after = (
            signal.retry_after if signal else self.config.fallback_retry_delay
        )
        max_wait = self.config.max_retry_wait

        if max_wait is not None and retry_after > max_wait:
            logger.error(
                f"[{self.config.name}] Provider asked to wait {retry_after:.0f}s, "
                f"over the {max_wait:.0f}s limit; failing request {request.request_id}"
            )
            surfaced = ProviderRateLimitedError(
                f"Provider rate limited for {retry_after:.0f}s, "
                f"exceeding the {max_wait:.0f}s retry limit",
                retry_after=retry_after,
            )
            surfaced.__cause__ = error
            self._inc(REQUESTS_FAILED_TOTAL, reason="rate_limited")
            request.reject(surfaced)
            return

        if self._closed:
            request.reject(QueueCancelledError(SHUTDOWN_REASON, request.request_id))
            self._inc(REQUESTS_FAILED_TOTAL, reason="cancelled")
            return

        request.retries += 1
        self.queue.requeue_front(request)
        self._resume_at = max(self._resume_at, self._clock() + retry_after)
        self._inc(REQUESTS_REQUEUED_TOTAL)
        self._wakeup.set()
        logger.warning(
            f"[{self.config.name}] Provider rate limit hit, re-queued request "
            f"{request.request_id} (retry {request.retries}) for {retry_after:.0f}s "
            f"(source: {signal.source if signal else 'fallback'})"
        )
        self._update_gauges()
        self._ensure_draining()

    # === Drain Loop ===

    def _ensure_draining(self) -> None:
        if self._draining:
            return
        self._draining = True
        self._drain_task = asyncio.create_task(self._drain_queue())

    async def _drain_queue(self) -> None:
        """Serve queued requests one at a time until the queue is empty."""
        try:
            while self.queue:
                wait = self._dispatch_delay()
                if wait > 0:
                    logger.info(
                        f"[{self.config.name}] Waiting {wait:.1f}s for next slot "
                        f"({len(self.queue)} queued)"
                    )
                    await self._pause(wait)
                    continue

                token = self.window.try_admit()
                if token is None:
                    # Float rounding at the window edge
                    await self._pause(EDGE_RECHECK_DELAY)
                    continue

                request = self.queue.dequeue_oldest()
                if request is None:
                    self.window.release(token)
                    break

                self._inc(REQUESTS_ADMITTED_TOTAL, path="queued")
                self._update_gauges()
                try:
                    await self._run_queued(request, token)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(
                        f"[{self.config.name}] Unexpected error serving request "
                        f"{request.request_id}; continuing with the queue"
                    )
                    if request.reject(e):
                        self._record_failure(e)
        finally:
            self._draining = False
            self._drain_task = None
            self._update_gauges()

    async def _pause(self, delay: float) -> None:
        """Sleep for ``delay``, returning early if a re-queue changed the timing."""
        self._wakeup.clear()
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waker = asyncio.ensure_future(self._wakeup.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waker.cancel()

    async def _run_queued(self, request: QueuedRequest, token: float) -> None:
        waited = self._clock() - request.arrival_time
        if self.metrics_collector:
            self.metrics_collector.observe_histogram(
                QUEUE_WAIT_SECONDS, waited, labels=self._labels
            )
        logger.info(
            f"[{self.config.name}] Dispatching queued request {request.request_id} "
            f"after {waited:.1f}s (retries: {request.retries})"
        )

        try:
            result = await self._dispatch(request.request_input)
        except asyncio.CancelledError:
            request.reject(QueueCancelledError(SHUTDOWN_REASON, request.request_id))
            raise
        except Exception as e:
            classification = self._classify(e)
            if classification is not None and classification.is_rate_limited:
                self._defer_rate_limited(request, token, classification.signal, e)
            else:
                self._record_failure(e)
                request.reject(e)
            return

        request.resolve(result)

    # === Helpers ===

    def _classify(self, error: Exception) -> ErrorClassification | None:
        """Classify ``error``; None when the classifier itself fails."""
        try:
            return self.classifier.classify(error)
        except Exception:
            logger.exception(
                f"[{self.config.name}] Error classifier failed on "
                f"{type(error).__name__}; treating it as an ordinary failure"
            )
            return None

    def _can_admit_now(self) -> bool:
        return (
            not self.queue
            and self._clock() >= self._resume_at
            and self.window.can_admit()
        )

    def _dispatch_delay(self) -> float:
        """Seconds until the next dispatch may happen (window and back-off)."""
        backoff = self._resume_at - self._clock()
        return max(0.0, self.window.time_until_next_slot(), backoff)

    def _record_failure(self, error: BaseException) -> None:
        if isinstance(error, ProviderFailureError):
            reason = "provider_failure"
        elif isinstance(error, PollTimeoutError):
            reason = "poll_timeout"
        elif isinstance(error, ProviderRateLimitedError):
            reason = "rate_limited"
        else:
            reason = "error"
        self._inc(REQUESTS_FAILED_TOTAL, reason=reason)
        logger.error(f"[{self.config.name}] Request failed ({reason}): {error}")

    def _inc(self, name: str, value: float = 1, **labels: str) -> None:
        if self.metrics_collector:
            self.metrics_collector.inc_counter(
                name, value, labels={**self._labels, **labels}
            )

    def _gauge_delta(self, name: str, delta: float) -> None:
        if self.metrics_collector:
            self.metrics_collector.inc_gauge(name, delta, labels=self._labels)

    def _update_gauges(self) -> None:
        if self.metrics_collector:
            self.metrics_collector.set_gauge(
                QUEUE_DEPTH, len(self.queue), labels=self._labels
            )
            self.metrics_collector.set_gauge(
                WINDOW_USED, self.window.used, labels=self._labels
            )


def _to_ms(seconds: float) -> int:
    return math.ceil(seconds * 1000)


def create_scheduler(
    provider: GenerationProvider,
    config: SchedulerConfig | None = None,
    **overrides: Any,
) -> Scheduler:
    """
    Factory function to create a Scheduler.

    Args:
        provider: Remote generation provider
        config: Optional scheduler config (will create default if not provided)
        **overrides: SchedulerConfig fields to override, plus the Scheduler
            keyword arguments (classifier, poller, clock, sleep,
            metrics_collector)

    Returns:
        Configured Scheduler instance

    Raises:
        ValueError: If an override is invalid
        ConfigurationError: If the provider is unusable
    """
    scheduler_kwargs = {
        key: overrides.pop(key)
        for key in ("classifier", "poller", "clock", "sleep", "metrics_collector")
        if key in overrides
    }

    config = config or SchedulerConfig()
    if overrides:
        field_names = {f.name for f in dataclasses.fields(SchedulerConfig)}
        unknown = set(overrides) - field_names
        if unknown:
            raise ValueError(f"Unknown scheduler options: {', '.join(sorted(unknown))}")
        config = dataclasses.replace(config, **overrides)

    return Scheduler(provider, config, **scheduler_kwargs)


__all__ = ["CLEAR_QUEUE_REASON", "SHUTDOWN_REASON", "Scheduler", "create_scheduler"]
