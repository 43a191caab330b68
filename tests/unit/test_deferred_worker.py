"""Tests for DeferredWorker: isolation, retry backoff, dead-lettering.

Time is driven by SimClock, so retry delays are exercised without sleeping.
"""

from __future__ import annotations

import asyncio

import pytest

from pod_marketplace.bus.bus import DomainEventBus
from pod_marketplace.bus.envelope import DeferredTask, EventEnvelope
from pod_marketplace.bus.queue import InMemoryTaskQueue
from pod_marketplace.bus.registry import HandlerRegistry
from pod_marketplace.bus.retry import RetryPolicy
from pod_marketplace.bus.worker import DeferredWorker
from pod_marketplace.core.enums import DeliveryMode
from pod_marketplace.domain.events import DomainEvent


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _event() -> DomainEvent:
    return DomainEvent(name="product.created", payload={"product_id": "1"})


class Flaky:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self, event) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")


def _wire(sim_clock, *handlers, policy: RetryPolicy | None = None, **worker_kwargs):
    registry = HandlerRegistry()
    for handler_id, handler in handlers:
        registry.subscribe(
            "product.created", handler, DeliveryMode.DEFERRED, handler_id=handler_id,
        )
    queue = InMemoryTaskQueue(clock=sim_clock)
    bus = DomainEventBus(registry, queue)
    worker = DeferredWorker(registry, queue, policy or RetryPolicy(), **worker_kwargs)
    return bus, queue, worker


# ===========================================================================
# Execution
# ===========================================================================


class TestExecution:
    @pytest.mark.asyncio
    async def test_runs_handler_and_acks(self, sim_clock):
        received = []

        async def handler(event):
            received.append(event)

        bus, queue, worker = _wire(sim_clock, ("notify", handler))
        event = _event()
        await bus.publish(event)

        assert await worker.run_until_idle() == 1
        assert received[0].event_id == event.event_id
        assert received[0].payload["product_id"] == "1"
        assert worker.messages_processed == 1
        assert queue.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_failure_isolated_from_other_handlers(self, sim_clock):
        ok_calls = []

        async def broken(event):
            raise ValueError("boom")

        async def ok(event):
            ok_calls.append(event.event_id)

        bus, queue, worker = _wire(sim_clock, ("broken", broken), ("ok", ok))
        await bus.publish(_event())
        await worker.run_until_idle()

        assert len(ok_calls) == 1
        assert worker.get_error_counts() == {"product.created/broken": 1}

    @pytest.mark.asyncio
    async def test_error_callback_invoked(self, sim_clock):
        seen = []

        async def broken(event):
            raise ValueError("boom")

        bus, _, worker = _wire(
            sim_clock, ("broken", broken),
            on_handler_error=lambda name, hid, eid, exc: seen.append((name, hid, str(exc))),
        )
        await bus.publish(_event())
        await worker.run_until_idle()

        assert seen == [("product.created", "broken", "boom")]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_worker(self, sim_clock):
        async def broken(event):
            raise ValueError("boom")

        def bad_callback(*args):
            raise RuntimeError("callback broke")

        bus, queue, worker = _wire(
            sim_clock, ("broken", broken), on_handler_error=bad_callback,
        )
        await bus.publish(_event())
        await worker.run_until_idle()
        assert queue.delayed_count == 1


# ===========================================================================
# Retry
# ===========================================================================


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_waits_for_backoff(self, sim_clock):
        flaky = Flaky(failures=1)
        bus, queue, worker = _wire(sim_clock, ("flaky", flaky))
        await bus.publish(_event())

        await worker.run_until_idle()
        assert flaky.calls == 1
        assert queue.delayed_count == 1

        sim_clock.advance(0.5)
        await worker.run_until_idle()
        assert flaky.calls == 1

        sim_clock.advance(0.5)
        await worker.run_until_idle()
        assert flaky.calls == 2
        assert worker.messages_processed == 1
        assert queue.delayed_count == 0

    @pytest.mark.asyncio
    async def test_attempt_number_increments(self, sim_clock):
        seen_attempts = []
        flaky = Flaky(failures=2)
        bus, queue, worker = _wire(sim_clock, ("flaky", flaky))
        await bus.publish(_event())

        for delay in (0, 1, 2):
            sim_clock.advance(delay)
            reserved = await queue.reserve(10)
            seen_attempts.extend(DeferredTask.from_json(r.raw).attempt for r in reserved)
            queue.redeliver_in_flight()
            await worker.run_once()

        assert seen_attempts == [1, 2, 3]
        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_dead_letter_after_max_attempts(self, sim_clock):
        flaky = Flaky(failures=100)
        policy = RetryPolicy(base_delay_seconds=1, max_delay_seconds=60, max_attempts=3)
        bus, queue, worker = _wire(sim_clock, ("flaky", flaky), policy=policy)
        await bus.publish(_event())

        for _ in range(5):
            await worker.run_until_idle()
            sim_clock.advance(60)

        assert flaky.calls == 3
        assert worker.dead_lettered == 1
        letter = queue.dead_letters[0]
        assert letter.handler_id == "flaky"
        assert letter.event_name == "product.created"
        assert letter.attempts == 3
        assert letter.error == "failure 3"


# ===========================================================================
# Poison tasks
# ===========================================================================


class TestPoisonTasks:
    @pytest.mark.asyncio
    async def test_undecodable_task_dead_lettered(self, sim_clock):
        _, queue, worker = _wire(sim_clock)
        await queue.enqueue_raw("{not json")

        await worker.run_until_idle()

        assert [d.error for d in queue.dead_letters] == ["deserialization_failed"]

    @pytest.mark.asyncio
    async def test_unknown_handler_dead_lettered(self, sim_clock):
        _, queue, worker = _wire(sim_clock)
        task = DeferredTask(
            handler_id="gone.handler",
            envelope=EventEnvelope.from_event(_event()),
        )
        await queue.enqueue(task)

        await worker.run_until_idle()

        letter = queue.dead_letters[0]
        assert letter.error == "unknown_handler"
        assert letter.handler_id == "gone.handler"

    @pytest.mark.asyncio
    async def test_sync_handler_id_is_not_runnable_deferred(self, sim_clock):
        registry = HandlerRegistry()

        async def sync_handler(event):
            raise AssertionError("must not run")

        registry.subscribe("product.created", sync_handler, handler_id="inline")
        queue = InMemoryTaskQueue(clock=sim_clock)
        worker = DeferredWorker(registry, queue)
        await queue.enqueue(
            DeferredTask(handler_id="inline", envelope=EventEnvelope.from_event(_event()))
        )

        await worker.run_until_idle()
        assert queue.dead_letters[0].error == "unknown_handler"


# ===========================================================================
# Crash recovery
# ===========================================================================


class TestRedelivery:
    @pytest.mark.asyncio
    async def test_unacked_task_delivered_again(self, sim_clock):
        flaky = Flaky(failures=0)
        bus, queue, worker = _wire(sim_clock, ("h", flaky))
        await bus.publish(_event())

        # Reserve without processing: simulates a worker that died mid-task.
        await queue.reserve(10)
        assert queue.redeliver_in_flight() == 1

        await worker.run_until_idle()
        assert flaky.calls == 1


# ===========================================================================
# Ordering and lifecycle
# ===========================================================================


class TestOrdering:
    @pytest.mark.asyncio
    async def test_deferred_handlers_run_in_registration_order(self, sim_clock):
        calls: list[str] = []

        async def handler_a(event):
            calls.append("A")

        async def handler_b(event):
            calls.append("B")

        bus, _, worker = _wire(sim_clock, ("a", handler_a), ("b", handler_b))
        for _ in range(3):
            await bus.publish(_event())
            await worker.run_until_idle()

        assert calls == ["A", "B"] * 3


class TestRunForever:
    @pytest.mark.asyncio
    async def test_stop_from_another_task(self, sim_clock):
        handled = []

        async def handler(event):
            handled.append(event.event_id)

        bus, _, worker = _wire(sim_clock, ("h", handler))
        await bus.publish(_event())

        loop_task = asyncio.ensure_future(worker.run_forever())

        async def stop_when_drained():
            while not handled:
                await asyncio.sleep(0)
            worker.stop()

        await asyncio.wait_for(stop_when_drained(), timeout=2)
        await asyncio.wait_for(loop_task, timeout=2)

        assert len(handled) == 1
        assert loop_task.done()

    @pytest.mark.asyncio
    async def test_cancel_ends_loop(self, sim_clock):
        _, _, worker = _wire(sim_clock)
        loop_task = asyncio.ensure_future(worker.run_forever())
        await asyncio.sleep(0)

        loop_task.cancel()
        await asyncio.wait_for(loop_task, timeout=2)
        assert loop_task.done()
