# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Job poller driving a remote job from submission to a terminal state.

The poller follows a fixed PollSchedule: each attempt waits its scheduled
delay after the previous attempt completed, queries the provider, and
interprets the answer. The state machine is

    SUBMITTED -> POLLING -> {COMPLETED, FAILED, TIMED_OUT}

Pending and unknown statuses continue to the next attempt. A failing status
query consumes its attempt and polling continues, except on the final
attempt where it becomes a terminal failure.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..exceptions import PollTimeoutError, ProviderFailureError
from ..observability.collector import UnifiedMetricsCollector
from ..observability.constants import POLL_ATTEMPTS_TOTAL, POLL_TIMEOUTS_TOTAL
from ..protocols.provider import GenerationProvider
from ..types.job import JobHandle, JobState, PollResult, PollState
from .schedule import PollSchedule

logger = logging.getLogger(__name__)


class JobPoller:
    """
    Polls a provider job until it completes, fails or exhausts its schedule.

    The clock and sleep function are injectable so the schedule can be
    exercised deterministically in tests.

    Example:
        >>> poller = JobPoller(provider, PollSchedule((0, 38, 25, 30)))
        >>> image_url = await poller.poll(job_id)
    """

    def __init__(
        self,
        provider: GenerationProvider,
        schedule: PollSchedule | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics_collector: UnifiedMetricsCollector | None = None,
        name: str = "default",
    ) -> None:
        self.provider = provider
        self.schedule = schedule or PollSchedule()
        self._clock = clock
        self._sleep = sleep
        self.metrics_collector = metrics_collector
        self._labels = {"scheduler": name}

    async def poll(self, job_id: str, handle: JobHandle | None = None) -> Any:
        """
        Drive ``job_id`` to a terminal state.

        Args:
            job_id: Identifier returned by the provider's ``submit``
            handle: Optional handle to update in place, letting the caller
                observe attempts and elapsed time

        Returns:
            The provider's result payload for the completed job

        Raises:
            ProviderFailureError: The provider reported the job as failed, or
                the final status query failed
            PollTimeoutError: The schedule was exhausted without a terminal state
        """
        if handle is None:
            handle = JobHandle(job_id=job_id, submitted_at=self._clock())
        handle.state = JobState.POLLING
        total_attempts = self.schedule.attempts

        logger.debug(
            f"Polling job {job_id} with {total_attempts} attempts "
            f"over at least {self.schedule.total_wait:.0f}s"
        )

        for attempt, delay in self.schedule:
            if delay > 0:
                logger.debug(
                    f"Waiting {delay:.0f}s before poll attempt {attempt}/{total_attempts} "
                    f"(elapsed: {handle.elapsed:.0f}s)"
                )
                await self._sleep(delay)

            handle.attempts_made = attempt
            handle.elapsed = self._clock() - handle.submitted_at
            is_final = attempt >= total_attempts

            try:
                status = await self.provider.poll_status(job_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_attempt("error")
                if is_final:
                    handle.state = JobState.FAILED
                    raise ProviderFailureError(
                        f"Polling failed after {attempt} attempts "
                        f"({handle.elapsed:.0f}s total): {e}",
                        job_id=job_id,
                        attempts=attempt,
                        elapsed=handle.elapsed,
                    ) from e
                logger.warning(
                    f"Poll attempt {attempt}/{total_attempts} for job {job_id} "
                    f"failed, continuing to next interval: {e}"
                )
                continue

            result = self._interpret(status)
            self._record_attempt(result.state.value)

            if result.state is PollState.DONE:
                handle.state = JobState.COMPLETED
                logger.info(
                    f"Job {job_id} completed after {attempt} attempts "
                    f"({handle.elapsed:.0f}s)"
                )
                return result.result

            if result.state is PollState.FAILED:
                handle.state = JobState.FAILED
                reason = result.reason or "Unknown error"
                raise ProviderFailureError(
                    f"Job {job_id} failed with status {result.raw_status}: {reason}",
                    job_id=job_id,
                    reason=result.reason,
                    attempts=attempt,
                    elapsed=handle.elapsed,
                )

            # PENDING and UNKNOWN both count against the attempt budget
            if result.state is PollState.UNKNOWN:
                logger.info(
                    f"Job {job_id} reported unknown status {result.raw_status!r} "
                    f"on attempt {attempt}/{total_attempts}"
                )
            else:
                logger.debug(
                    f"Job {job_id} still pending on attempt {attempt}/{total_attempts}"
                )

        handle.state = JobState.TIMED_OUT
        if self.metrics_collector:
            self.metrics_collector.inc_counter(POLL_TIMEOUTS_TOTAL, labels=self._labels)
        logger.warning(
            f"Job {job_id} did not complete within {handle.elapsed:.0f}s "
            f"({handle.attempts_made} attempts)"
        )
        raise PollTimeoutError(job_id, handle.elapsed, handle.attempts_made)

    def _interpret(self, status: Any) -> PollResult:
        """Accept a PollResult or a bare numeric provider status code."""
        if isinstance(status, PollResult):
            return status
        return PollResult.from_status_code(status)

    def _record_attempt(self, outcome: str) -> None:
        if self.metrics_collector:
            self.metrics_collector.inc_counter(
                POLL_ATTEMPTS_TOTAL, labels={**self._labels, "outcome": outcome}
            )


__all__ = ["JobPoller"]
