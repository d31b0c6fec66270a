"""
Shared fixtures for the generation scheduler tests.

Time is simulated with FakeClock: its ``sleep`` only returns once the test
advances the clock past the sleeper's deadline, so window and polling
behaviour can be asserted at exact timestamps.

Example:
    @pytest.mark.asyncio
    async def test_waits(fake_clock):
        task = asyncio.create_task(fake_clock.sleep(10))
        await fake_clock.advance(10)
        assert task.done()
"""

from __future__ import annotations

import asyncio
import heapq
from collections.abc import Awaitable
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from generation_scheduler.observability.collector import UnifiedMetricsCollector
from generation_scheduler.types.job import PollResult


class FakeClock:
    """Deterministic monotonic clock with a matching ``sleep`` coroutine."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleep_calls: list[float] = []
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = 0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleep_calls.append(delay)
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + delay, self._seq, future))
        self._seq += 1
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def settle(self, rounds: int = 50) -> None:
        """Let every runnable task proceed until it blocks again."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake_at, _, future = heapq.heappop(self._sleepers)
            self.now = max(self.now, wake_at)
            if not future.done():
                future.set_result(None)
            await self.settle()
        self.now = target
        await self.settle()

    async def run_until_complete(
        self, awaitable: Awaitable[Any], max_time: float = 100_000.0
    ) -> Any:
        """Advance time from one wake-up to the next until ``awaitable`` finishes."""
        task = asyncio.ensure_future(awaitable)
        deadline = self.now + max_time
        await self.settle()
        while not task.done():
            self._drop_cancelled()
            if not self._sleepers:
                raise AssertionError("task is blocked with no pending sleepers")
            wake_at = self._sleepers[0][0]
            if wake_at > deadline:
                raise AssertionError(f"task still pending after {max_time}s")
            await self.advance(wake_at - self.now)
        return task.result()

    def _drop_cancelled(self) -> None:
        while self._sleepers and self._sleepers[0][2].done():
            heapq.heappop(self._sleepers)


class FakeProvider:
    """
    In-memory GenerationProvider recording when it was called.

    Args:
        clock: Clock used to timestamp calls
        submit_delay: Simulated submit latency, slept on the fake clock
        polls_until_done: Number of PENDING answers before DONE
    """

    def __init__(
        self,
        clock: FakeClock,
        submit_delay: float = 0.0,
        polls_until_done: int = 0,
    ) -> None:
        self.clock = clock
        self.submit_delay = submit_delay
        self.polls_until_done = polls_until_done
        self.available = True
        self.submit_log: list[tuple[float, Any]] = []
        self.poll_log: list[tuple[float, str]] = []
        self.submit_errors: dict[Any, list[BaseException]] = {}
        self.poll_overrides: dict[Any, list[Any]] = {}
        self._jobs: dict[str, Any] = {}
        self._polls: dict[str, int] = {}

    def fail_submit(self, request_input: Any, *errors: BaseException) -> None:
        """Make the next submits of ``request_input`` raise ``errors`` in order."""
        self.submit_errors.setdefault(request_input, []).extend(errors)

    def is_available(self) -> bool:
        return self.available

    @property
    def submitted(self) -> list[Any]:
        return [request_input for _, request_input in self.submit_log]

    @property
    def submit_times(self) -> list[float]:
        return [at for at, _ in self.submit_log]

    async def submit(self, request_input: Any) -> str:
        self.submit_log.append((self.clock(), request_input))
        if self.submit_delay:
            await self.clock.sleep(self.submit_delay)
        errors = self.submit_errors.get(request_input)
        if errors:
            raise errors.pop(0)
        job_id = f"job-{len(self.submit_log)}"
        self._jobs[job_id] = request_input
        self._polls[job_id] = 0
        return job_id

    async def poll_status(self, job_id: str) -> PollResult:
        self.poll_log.append((self.clock(), job_id))
        request_input = self._jobs[job_id]
        overrides = self.poll_overrides.get(request_input)
        if overrides:
            answer = overrides.pop(0)
            if isinstance(answer, BaseException):
                raise answer
            return answer
        self._polls[job_id] += 1
        if self._polls[job_id] <= self.polls_until_done:
            return PollResult.pending(raw_status=1)
        return PollResult.done(f"result:{request_input}", raw_status=2)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(fake_clock: FakeClock) -> FakeProvider:
    return FakeProvider(fake_clock)


@pytest.fixture
def collector() -> UnifiedMetricsCollector:
    """Collector bound to a private registry so tests never collide."""
    return UnifiedMetricsCollector(registry=CollectorRegistry())
