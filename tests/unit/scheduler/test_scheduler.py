"""
Unit tests for the Scheduler.

All timing runs on the fake clock from conftest; the provider completes jobs
instantly unless a test says otherwise.
"""

import asyncio
from unittest.mock import Mock

import pytest

from generation_scheduler.exceptions import (
    ConfigurationError,
    GenerationSchedulerError,
    ProviderFailureError,
    ProviderRateLimitedError,
    QueueCancelledError,
    QueueOverflowError,
)
from generation_scheduler.observability.constants import (
    PROVIDER_RATE_LIMITS_TOTAL,
    QUEUE_CANCELLATIONS_TOTAL,
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_REQUEUED_TOTAL,
)
from generation_scheduler.scheduler.config import SchedulerConfig
from generation_scheduler.scheduler.scheduler import (
    CLEAR_QUEUE_REASON,
    EDGE_RECHECK_DELAY,
    Scheduler,
    create_scheduler,
)
from generation_scheduler.types.job import PollResult

LABELS = {"scheduler": "default"}


@pytest.fixture
def make_scheduler(provider, fake_clock, collector):
    def _make(**overrides):
        options = {"max_per_window": 2, "window_duration": 60.0, "poll_schedule": (0,)}
        options.update(overrides)
        return Scheduler(
            provider,
            SchedulerConfig(**options),
            clock=fake_clock,
            sleep=fake_clock.sleep,
            metrics_collector=collector,
        )

    return _make


def submit_all(scheduler, *inputs):
    return [asyncio.create_task(scheduler.submit_request(x)) for x in inputs]


class TestFastPath:
    @pytest.mark.asyncio
    async def test_admits_immediately(self, make_scheduler, provider, collector):
        scheduler = make_scheduler()

        result = await scheduler.submit_request("A")

        assert result == "result:A"
        assert provider.submit_times == [0.0]
        assert not scheduler.queue
        assert (
            collector.get_counter(
                REQUESTS_ADMITTED_TOTAL, {**LABELS, "path": "immediate"}
            )
            == 1
        )
        assert collector.get_counter(REQUESTS_COMPLETED_TOTAL, LABELS) == 1

    @pytest.mark.asyncio
    async def test_ordinary_error_propagates_unchanged(
        self, make_scheduler, provider, collector
    ):
        scheduler = make_scheduler()
        error = ValueError("prompt rejected")
        provider.fail_submit("A", error)

        with pytest.raises(ValueError) as exc_info:
            await scheduler.submit_request("A")

        assert exc_info.value is error
        assert collector.get_counter(REQUESTS_FAILED_TOTAL, {**LABELS, "reason": "error"}) == 1
        # An ordinary failure still occupied its slot
        assert scheduler.window.used == 1

    @pytest.mark.asyncio
    async def test_job_failure_surfaces(self, make_scheduler, provider, collector):
        scheduler = make_scheduler()
        provider.poll_overrides["A"] = [PollResult.failed("nsfw", raw_status=3)]

        with pytest.raises(ProviderFailureError, match="nsfw"):
            await scheduler.submit_request("A")

        assert (
            collector.get_counter(
                REQUESTS_FAILED_TOTAL, {**LABELS, "reason": "provider_failure"}
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_arrivals_do_not_jump_the_queue(self, make_scheduler, provider, fake_clock):
        provider.fail_submit("A", ProviderRateLimitedError("429", retry_after=20))
        scheduler = make_scheduler(max_per_window=2, window_duration=60.0)
        (first,) = submit_all(scheduler, "A")
        await fake_clock.advance(5)

        # The window has room, but A is waiting in the queue
        assert scheduler.window.can_admit()
        assert not scheduler.get_status().can_admit_now
        (second,) = submit_all(scheduler, "B")
        await fake_clock.run_until_complete(asyncio.gather(first, second))

        assert provider.submit_log == [(0.0, "A"), (20.0, "A"), (20.0, "B")]


class TestQueueing:
    @pytest.mark.asyncio
    async def test_two_per_minute_scenario(self, make_scheduler, provider, fake_clock):
        scheduler = make_scheduler(max_per_window=2, window_duration=60.0)

        results = await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "1", "2", "3"))
        )

        assert results == ["result:1", "result:2", "result:3"]
        assert provider.submit_times == [0.0, 0.0, 60.0]

    @pytest.mark.asyncio
    async def test_fifo_order_while_at_capacity(
        self, make_scheduler, provider, fake_clock, collector
    ):
        scheduler = make_scheduler(max_per_window=1, window_duration=60.0)

        await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "X", "A", "B", "C"))
        )

        assert provider.submitted == ["X", "A", "B", "C"]
        assert provider.submit_times == [0.0, 60.0, 120.0, 180.0]
        assert (
            collector.get_counter(REQUESTS_ADMITTED_TOTAL, {**LABELS, "path": "queued"})
            == 3
        )

    @pytest.mark.asyncio
    async def test_window_invariant(self, make_scheduler, provider, fake_clock):
        scheduler = make_scheduler(max_per_window=2, window_duration=60.0)

        await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, *"ABCDEFG"))
        )

        times = provider.submit_times
        assert times == [0.0, 0.0, 60.0, 60.0, 120.0, 120.0, 180.0]
        for start in times:
            assert sum(1 for t in times if start <= t < start + 60.0) <= 2

    @pytest.mark.asyncio
    async def test_queued_failure_does_not_stop_drain(
        self, make_scheduler, provider, fake_clock
    ):
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)
        provider.fail_submit("A", RuntimeError("bad input"))
        tasks = submit_all(scheduler, "X", "A", "B")

        results = await fake_clock.run_until_complete(
            asyncio.gather(*tasks, return_exceptions=True)
        )

        assert results[0] == "result:X"
        assert isinstance(results[1], RuntimeError)
        assert results[2] == "result:B"
        assert provider.submit_times == [0.0, 10.0, 20.0]

    @pytest.mark.asyncio
    async def test_abandoned_request_is_skipped(self, make_scheduler, provider, fake_clock):
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)
        first, abandoned, kept = submit_all(scheduler, "A", "B", "C")
        await fake_clock.settle()

        abandoned.cancel()
        await fake_clock.run_until_complete(asyncio.gather(first, kept))

        assert provider.submitted == ["A", "C"]
        assert provider.submit_times == [0.0, 10.0]

    @pytest.mark.asyncio
    async def test_queue_overflow(self, make_scheduler, provider, fake_clock, collector):
        scheduler = make_scheduler(max_per_window=1, max_queue_size=1)
        first, second = submit_all(scheduler, "A", "B")
        await fake_clock.settle()

        with pytest.raises(QueueOverflowError):
            await scheduler.submit_request("C")

        await fake_clock.run_until_complete(asyncio.gather(first, second))
        assert provider.submitted == ["A", "B"]

    @pytest.mark.asyncio
    async def test_drain_flag_cleared_when_empty(self, make_scheduler, fake_clock):
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)

        await fake_clock.run_until_complete(asyncio.gather(*submit_all(scheduler, "A", "B")))
        await fake_clock.settle()

        assert not scheduler._draining
        assert scheduler._drain_task is None


class TestProviderRateLimits:
    @pytest.mark.asyncio
    async def test_retry_served_before_waiting_request(
        self, make_scheduler, provider, fake_clock
    ):
        provider.submit_delay = 1.0
        provider.fail_submit("A", ProviderRateLimitedError("429", retry_after=3))
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)

        results = await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "A", "B"))
        )

        assert results == ["result:A", "result:B"]
        # The hint arrives at t=1 and cuts short the wait for B's window slot
        assert provider.submit_log == [(0.0, "A"), (4.0, "A"), (14.0, "B")]

    @pytest.mark.asyncio
    async def test_queued_request_requeued_after_hint(
        self, make_scheduler, provider, fake_clock, collector
    ):
        provider.fail_submit("A", ProviderRateLimitedError("429", retry_after=30))
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)

        await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "X", "A"))
        )

        assert provider.submit_log == [(0.0, "X"), (10.0, "A"), (40.0, "A")]
        assert collector.get_counter(PROVIDER_RATE_LIMITS_TOTAL, LABELS) == 1
        assert collector.get_counter(REQUESTS_REQUEUED_TOTAL, LABELS) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_releases_admission(self, make_scheduler, provider, fake_clock):
        provider.fail_submit("A", ProviderRateLimitedError("429", retry_after=5))
        scheduler = make_scheduler(max_per_window=1, window_duration=60.0)

        await fake_clock.run_until_complete(scheduler.submit_request("A"))

        # The retry took the slot the failed attempt gave back
        assert provider.submit_times == [0.0, 5.0]

    @pytest.mark.asyncio
    async def test_http_429_recognized(self, make_scheduler, provider, fake_clock):
        error = RuntimeError("upstream said 429 Too Many Requests")
        error.status_code = 429
        error.retry_after = 2
        provider.fail_submit("A", error)
        scheduler = make_scheduler()

        result = await fake_clock.run_until_complete(scheduler.submit_request("A"))

        assert result == "result:A"
        assert provider.submit_times == [0.0, 2.0]

    @pytest.mark.asyncio
    async def test_long_hint_surfaced_to_caller(self, make_scheduler, provider, collector):
        original = ProviderRateLimitedError("429", retry_after=600)
        provider.fail_submit("A", original)
        scheduler = make_scheduler()

        with pytest.raises(ProviderRateLimitedError) as exc_info:
            await scheduler.submit_request("A")

        assert exc_info.value.retry_after == 600
        assert exc_info.value.__cause__ is original
        assert scheduler.window.used == 0
        assert not scheduler.queue
        assert (
            collector.get_counter(REQUESTS_FAILED_TOTAL, {**LABELS, "reason": "rate_limited"})
            == 1
        )

    @pytest.mark.asyncio
    async def test_unbounded_retry_wait(self, make_scheduler, provider, fake_clock):
        provider.fail_submit("A", ProviderRateLimitedError("429", retry_after=600))
        scheduler = make_scheduler(max_retry_wait=None)

        await fake_clock.run_until_complete(scheduler.submit_request("A"))

        assert provider.submit_times == [0.0, 600.0]

    @pytest.mark.asyncio
    async def test_fallback_delay_when_no_hint(self, make_scheduler, provider, fake_clock):
        provider.fail_submit("A", RuntimeError("RATE_LIMIT_ERROR"))
        scheduler = make_scheduler(fallback_retry_delay=45.0)

        await fake_clock.run_until_complete(scheduler.submit_request("A"))

        assert provider.submit_times == [0.0, 45.0]


class UnreadableResponse:
    status_code = 429
    headers = {}

    def json(self):
        raise RuntimeError("response body has not been read")


class StreamedRateLimitError(Exception):
    def __init__(self):
        super().__init__("rate limited")
        self.response = UnreadableResponse()


def broken_classifier():
    classifier = Mock()
    classifier.classify.side_effect = RuntimeError("classifier bug")
    return classifier


class TestDrainResilience:
    @pytest.mark.asyncio
    async def test_unreadable_rate_limit_body_is_retried(
        self, make_scheduler, provider, fake_clock
    ):
        provider.fail_submit("A", StreamedRateLimitError())
        scheduler = make_scheduler(
            max_per_window=1, window_duration=10.0, fallback_retry_delay=5.0
        )

        results = await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "X", "A", "B"))
        )

        assert results == ["result:X", "result:A", "result:B"]
        assert provider.submit_log == [(0.0, "X"), (10.0, "A"), (15.0, "A"), (25.0, "B")]

    @pytest.mark.asyncio
    async def test_classifier_failure_rejects_with_original_error(
        self, make_scheduler, provider, fake_clock, collector
    ):
        original = RuntimeError("upstream exploded")
        provider.fail_submit("A", original)
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)
        scheduler.classifier = broken_classifier()

        results = await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "X", "A", "B"), return_exceptions=True)
        )

        assert results[0] == "result:X"
        assert results[1] is original
        assert results[2] == "result:B"
        assert provider.submit_log == [(0.0, "X"), (10.0, "A"), (20.0, "B")]
        assert not scheduler.queue
        assert not scheduler.get_status().draining
        assert (
            collector.get_counter(REQUESTS_FAILED_TOTAL, {**LABELS, "reason": "error"})
            == 1
        )

    @pytest.mark.asyncio
    async def test_classifier_failure_on_fast_path(self, make_scheduler, provider):
        original = RuntimeError("upstream exploded")
        provider.fail_submit("A", original)
        scheduler = make_scheduler()
        scheduler.classifier = broken_classifier()

        with pytest.raises(RuntimeError) as exc_info:
            await scheduler.submit_request("A")

        assert exc_info.value is original
        assert not scheduler.queue

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_draining(
        self, make_scheduler, provider, fake_clock, collector
    ):
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)
        run_queued = scheduler._run_queued

        async def failing_for_a(request, token):
            if request.request_input == "A":
                raise RuntimeError("metrics backend down")
            await run_queued(request, token)

        scheduler._run_queued = failing_for_a

        results = await fake_clock.run_until_complete(
            asyncio.gather(*submit_all(scheduler, "X", "A", "B"), return_exceptions=True)
        )

        assert results[0] == "result:X"
        assert isinstance(results[1], RuntimeError)
        assert results[2] == "result:B"
        # A's admission was spent, so B waits for the following slot
        assert provider.submit_log == [(0.0, "X"), (20.0, "B")]
        assert (
            collector.get_counter(REQUESTS_FAILED_TOTAL, {**LABELS, "reason": "error"})
            == 1
        )

    @pytest.mark.asyncio
    async def test_window_edge_recheck_uses_injected_sleep(
        self, make_scheduler, provider, fake_clock
    ):
        scheduler = make_scheduler(max_per_window=1, window_duration=60.0)
        tasks = submit_all(scheduler, "X", "A")
        await fake_clock.settle()

        try_admit = scheduler.window.try_admit
        misses = [None]

        def flaky_try_admit():
            return misses.pop() if misses else try_admit()

        scheduler.window.try_admit = flaky_try_admit

        await fake_clock.run_until_complete(asyncio.gather(*tasks))

        assert EDGE_RECHECK_DELAY in fake_clock.sleep_calls
        assert provider.submit_times == pytest.approx([0.0, 60.0 + EDGE_RECHECK_DELAY])


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_all_queued(self, make_scheduler, provider, fake_clock, collector):
        scheduler = make_scheduler(max_per_window=1)
        tasks = submit_all(scheduler, "A", "B", "C")
        await fake_clock.settle()

        assert scheduler.cancel_all_queued() == 2

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert results[0] == "result:A"
        for result in results[1:]:
            assert isinstance(result, QueueCancelledError)
            assert str(result) == CLEAR_QUEUE_REASON
        assert provider.submitted == ["A"]
        assert collector.get_counter(QUEUE_CANCELLATIONS_TOTAL, LABELS) == 2

        await fake_clock.advance(60)
        assert not scheduler._draining

    @pytest.mark.asyncio
    async def test_cancel_with_custom_reason(self, make_scheduler, fake_clock):
        scheduler = make_scheduler(max_per_window=1)
        _, queued = submit_all(scheduler, "A", "B")
        await fake_clock.settle()

        scheduler.cancel_all_queued("maintenance")

        with pytest.raises(QueueCancelledError, match="maintenance"):
            await queued
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_cancel_empty_queue(self, make_scheduler):
        assert make_scheduler().cancel_all_queued() == 0


class TestStatus:
    @pytest.mark.asyncio
    async def test_idle_status(self, make_scheduler):
        status = make_scheduler().get_status()
        assert status.used_in_window == 0
        assert status.can_admit_now
        assert status.next_available_in_ms == 0
        assert status.estimated_wait_ms == 0
        assert status.queue_state == "idle"

    @pytest.mark.asyncio
    async def test_status_at_capacity(self, make_scheduler, fake_clock):
        scheduler = make_scheduler(max_per_window=2, window_duration=60.0)
        submit_all(scheduler, "A", "B")
        await fake_clock.advance(10)
        submit_all(scheduler, "C")
        await fake_clock.settle()

        status = scheduler.get_status()

        assert status.used_in_window == 2
        assert status.max_per_window == 2
        assert status.queue_length == 1
        assert not status.can_admit_now
        assert status.next_available_in_ms == 50_000
        assert status.estimated_wait_ms == 50_000
        assert status.is_at_capacity
        assert status.utilization_percentage == 100
        assert status.queue_state == "busy"
        assert status.draining

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_estimate_uses_queue_length(self, make_scheduler, fake_clock):
        scheduler = make_scheduler(max_per_window=1, window_duration=60.0)
        submit_all(scheduler, "A", "B", "C", "D")
        await fake_clock.settle()

        # Three queued requests at one slot per 60s
        assert scheduler.estimate_wait() == 180.0

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_get_metrics(self, make_scheduler):
        scheduler = make_scheduler(name="images")
        await scheduler.submit_request("A")

        metrics = scheduler.get_metrics()

        assert metrics["name"] == "images"
        assert metrics["running"] is True
        assert metrics["used_in_window"] == 1
        assert metrics["queue_length"] == 0
        assert "unified_metrics" in metrics


class TestAvailability:
    @pytest.mark.asyncio
    async def test_unavailable_provider_fails_fast(self, make_scheduler, provider):
        provider.available = False
        scheduler = make_scheduler()

        assert not scheduler.is_available()
        with pytest.raises(ConfigurationError):
            await scheduler.submit_request("A")
        assert provider.submitted == []
        assert not scheduler.queue

    def test_provider_without_check_is_available(self, collector):
        class BareProvider:
            async def submit(self, request_input):
                return "job"

            async def poll_status(self, job_id):
                return PollResult.done("ok")

        scheduler = Scheduler(BareProvider(), metrics_collector=collector)
        assert scheduler.is_available()

    def test_provider_missing_methods(self, collector):
        provider = Mock(spec=["submit"])
        with pytest.raises(ConfigurationError, match="poll_status"):
            Scheduler(provider, metrics_collector=collector)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_rejects_queued_requests(self, make_scheduler, fake_clock):
        scheduler = make_scheduler(max_per_window=1)
        first, queued = submit_all(scheduler, "A", "B")
        await fake_clock.settle()

        await scheduler.stop()

        assert await first == "result:A"
        with pytest.raises(QueueCancelledError, match="Scheduler stopped"):
            await queued
        assert not scheduler.is_running()
        assert scheduler._drain_task is None

    @pytest.mark.asyncio
    async def test_stop_rejects_request_in_flight_in_drain(
        self, make_scheduler, provider, fake_clock
    ):
        provider.submit_delay = 5.0
        scheduler = make_scheduler(max_per_window=1, window_duration=10.0)
        first, second = submit_all(scheduler, "A", "B")
        await fake_clock.advance(12)
        assert provider.submitted == ["A", "B"]

        await scheduler.stop()

        with pytest.raises(QueueCancelledError):
            await second
        await fake_clock.run_until_complete(first)

    @pytest.mark.asyncio
    async def test_submit_after_stop(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.stop()

        with pytest.raises(GenerationSchedulerError, match="stopped"):
            await scheduler.submit_request("A")

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.stop()
        await scheduler.stop()
        assert not scheduler.is_running()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_scheduler):
        async with make_scheduler() as scheduler:
            assert await scheduler.submit_request("A") == "result:A"
        assert not scheduler.is_running()


class TestCreateScheduler:
    def test_create_scheduler_default(self, provider, collector):
        scheduler = create_scheduler(provider, metrics_collector=collector)
        assert isinstance(scheduler, Scheduler)
        assert scheduler.config.max_per_window == 5
        assert scheduler.config.window_duration == 60.0

    def test_overrides_applied(self, provider, fake_clock, collector):
        base = SchedulerConfig(name="images")
        scheduler = create_scheduler(
            provider,
            base,
            max_per_window=3,
            poll_schedule=[0, 10],
            clock=fake_clock,
            metrics_collector=collector,
        )
        assert scheduler.config.name == "images"
        assert scheduler.config.max_per_window == 3
        assert scheduler.config.poll_schedule.delays == (0.0, 10.0)
        assert scheduler.poller.schedule.delays == (0.0, 10.0)
        assert base.max_per_window == 5

    def test_unknown_override(self, provider, collector):
        with pytest.raises(ValueError, match="Unknown scheduler options: colour"):
            create_scheduler(provider, colour="red", metrics_collector=collector)

    def test_invalid_override(self, provider, collector):
        with pytest.raises(ValueError, match="max_per_window"):
            create_scheduler(provider, max_per_window=0, metrics_collector=collector)

    def test_metrics_disabled(self, provider):
        scheduler = create_scheduler(provider, metrics_enabled=False)
        assert scheduler.metrics_collector is None
        assert "unified_metrics" not in scheduler.get_metrics()
