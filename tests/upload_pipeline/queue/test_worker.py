"""Tests for QueueWorker settlement and the poll loop."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.errors.exceptions import StoreError, ValidationError
from upload_pipeline.common.types import HandlerResult, PermanentFailurePolicy
from upload_pipeline.consumers.base import EventConsumer
from upload_pipeline.queue.durable_queue import DurableQueue
from upload_pipeline.queue.worker import QueueWorker, run_worker_pool

from tests.upload_pipeline.helpers import make_event, sample_value


class ScriptedConsumer(EventConsumer):
    """Returns (or raises) the scripted outcomes in order, then succeeds."""

    name = "scripted"

    def __init__(self, *outcomes, policy=PermanentFailurePolicy.ACK_AND_DROP):
        self.outcomes = list(outcomes)
        self.permanent_failure_policy = policy
        self.seen = []

    async def handle(self, event):
        self.seen.append(event)
        outcome = self.outcomes.pop(0) if self.outcomes else HandlerResult.success()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def dlq(clock):
    return DurableQueue("work-dlq", clock=clock)


@pytest.fixture
def queue(clock, dlq):
    return DurableQueue("work", max_attempts=3, dead_letter_queue=dlq, clock=clock)


class TestSettlement:
    async def test_success_acks(self, queue):
        queue.enqueue(make_event())
        worker = QueueWorker(queue, ScriptedConsumer())

        assert await worker.process_batch() == 1
        assert queue.is_empty
        assert worker.messages_processed == 1

    async def test_transient_failure_redelivers(self, queue):
        queue.enqueue(make_event())
        consumer = ScriptedConsumer(HandlerResult.transient(StoreError("down")))
        worker = QueueWorker(queue, consumer)

        await worker.process_batch()
        [message] = queue.peek()
        assert message.delivery_count == 1

        await worker.process_batch()
        assert queue.is_empty
        assert len(consumer.seen) == 2

    async def test_transient_until_budget_spent_dead_letters(self, queue, dlq):
        queue.enqueue(make_event())
        consumer = ScriptedConsumer(*[HandlerResult.transient(StoreError("down"))] * 3)
        worker = QueueWorker(queue, consumer)

        assert await worker.run_until_empty() == 3
        assert queue.is_empty
        assert len(dlq) == 1

    async def test_permanent_with_retry_policy_reaches_dead_letter(self, queue, dlq):
        queue.enqueue(make_event("doc.pdf"))
        consumer = ScriptedConsumer(
            *[HandlerResult.permanent(ValidationError("bad"))] * 3,
            policy=PermanentFailurePolicy.RETRY_UNTIL_DEAD_LETTER,
        )
        worker = QueueWorker(queue, consumer)

        await worker.run_until_empty()
        assert len(consumer.seen) == 3
        assert dlq.peek()[0].event.subject_key == "doc.pdf"

    async def test_permanent_with_drop_policy_acks(self, queue, dlq, caplog):
        queue.enqueue(make_event())
        consumer = ScriptedConsumer(HandlerResult.permanent(ValidationError("bad")))
        worker = QueueWorker(queue, consumer)

        await worker.process_batch()
        assert queue.is_empty
        assert dlq.is_empty
        assert "Dropping message after permanent failure" in caplog.text

    async def test_unexpected_exception_is_transient(self, queue):
        queue.enqueue(make_event())
        consumer = ScriptedConsumer(RuntimeError("something odd"))
        worker = QueueWorker(queue, consumer)

        await worker.process_batch()
        [message] = queue.peek()
        assert message.delivery_count == 1
        assert len(queue) == 1

    async def test_value_error_is_permanent(self, queue):
        queue.enqueue(make_event())
        consumer = ScriptedConsumer(ValueError("bad payload"))
        worker = QueueWorker(queue, consumer)

        await worker.process_batch()
        assert queue.is_empty

    async def test_records_outcome_metric(self, queue):
        labels = {"consumer": "scripted", "outcome": "transient_failure"}
        before = sample_value("upload_pipeline_handler_outcomes_total", labels)
        queue.enqueue(make_event())
        worker = QueueWorker(queue, ScriptedConsumer(HandlerResult.transient(StoreError("x"))))

        await worker.process_batch()
        assert sample_value("upload_pipeline_handler_outcomes_total", labels) == before + 1


class TestBatching:
    async def test_empty_queue(self, queue):
        worker = QueueWorker(queue, ScriptedConsumer())
        assert await worker.process_batch() == 0

    async def test_batch_size_respected(self, queue):
        for i in range(7):
            queue.enqueue(make_event(f"{i}.png"))
        worker = QueueWorker(queue, ScriptedConsumer(), batch_size=5)

        assert await worker.process_batch() == 5
        assert len(queue) == 2

    async def test_run_until_empty_max_batches(self, queue):
        for i in range(6):
            queue.enqueue(make_event(f"{i}.png"))
        worker = QueueWorker(queue, ScriptedConsumer(), batch_size=2)

        assert await worker.run_until_empty(max_batches=2) == 4
        assert len(queue) == 2

    def test_rejects_bad_batch_size(self, queue):
        with pytest.raises(ValueError):
            QueueWorker(queue, ScriptedConsumer(), batch_size=0)

    def test_worker_id_includes_queue_and_instance(self, queue):
        assert QueueWorker(queue, ScriptedConsumer(), instance_id=2).worker_id.startswith("work-2-")


class TestPollLoop:
    async def test_stops_on_shutdown_event(self, queue):
        shutdown = asyncio.Event()
        queue.enqueue(make_event())
        consumer = ScriptedConsumer()
        worker = QueueWorker(queue, consumer, poll_interval_seconds=0.01, shutdown_event=shutdown)

        task = asyncio.create_task(worker.start())
        for _ in range(100):
            if queue.is_empty:
                break
            await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(task, timeout=1)

        assert queue.is_empty
        assert not worker.is_running

    async def test_max_batches(self, queue):
        for i in range(3):
            queue.enqueue(make_event(f"{i}.png"))
        worker = QueueWorker(
            queue, ScriptedConsumer(), batch_size=1, poll_interval_seconds=0.01, max_batches=2
        )

        await asyncio.wait_for(worker.start(), timeout=1)
        assert len(queue) == 1

    async def test_loop_survives_receive_errors(self, queue, monkeypatch):
        shutdown = asyncio.Event()
        worker = QueueWorker(
            queue, ScriptedConsumer(), poll_interval_seconds=0.01, shutdown_event=shutdown
        )
        failing = AsyncMock(side_effect=[RuntimeError("boom"), 0, 0, 0, 0, 0])

        async def process_batch():
            result = await failing()
            if failing.call_count >= 2:
                shutdown.set()
            return result

        monkeypatch.setattr(worker, "process_batch", process_batch)
        await asyncio.wait_for(worker.start(), timeout=1)
        assert failing.call_count >= 2

    async def test_stop(self, queue):
        worker = QueueWorker(queue, ScriptedConsumer(), poll_interval_seconds=0.01)
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.02)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1)
        assert not worker.is_running


class TestRunWorkerPool:
    async def test_runs_until_shutdown(self, clock):
        shutdown = asyncio.Event()
        queues = [DurableQueue(f"pool-{i}", clock=clock) for i in range(2)]
        for q in queues:
            q.enqueue(make_event())
        workers = [
            QueueWorker(q, ScriptedConsumer(), poll_interval_seconds=0.01, shutdown_event=shutdown)
            for q in queues
        ]

        pool = asyncio.create_task(run_worker_pool(workers, shutdown))
        for _ in range(100):
            if all(q.is_empty for q in queues):
                break
            await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(pool, timeout=1)

        assert all(q.is_empty for q in queues)
        assert not any(w.is_running for w in workers)
