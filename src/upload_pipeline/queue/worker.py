"""
Queue worker: the poll loop between a durable queue and a consumer.

Each cycle receives a batch, hands every message to the consumer and
settles it by the consumer's result:

- SUCCESS: ack
- TRANSIENT_FAILURE: nack (redelivered, or dead-lettered once the retry
  budget is spent)
- PERMANENT_FAILURE: the consumer's policy decides. RETRY_UNTIL_DEAD_LETTER
  nacks, ACK_AND_DROP acks and logs the drop.

Unexpected exceptions from a consumer are classified; anything not clearly
permanent is treated as transient. The worker never times a handler out:
the queue's visibility deadline is the only timeout, and a settlement that
arrives after it is a logged no-op.
"""

import asyncio
import logging
import time

from core.logging.context_managers import LogContext
from core.logging.message_context import MessageLogContext
from core.logging.utilities import log_exception, log_with_context
from core.utils.worker_id import generate_worker_id
from upload_pipeline.common.logging import log_handler_result
from upload_pipeline.common.metrics import record_handler_outcome
from upload_pipeline.common.types import (
    HandlerOutcome,
    HandlerResult,
    PermanentFailurePolicy,
    QueuedMessage,
)
from upload_pipeline.consumers.base import EventConsumer, result_from_exception
from upload_pipeline.queue.durable_queue import DurableQueue

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_POLL_INTERVAL_SECONDS = 0.5


class QueueWorker:
    """
    Pulls batches from a DurableQueue and runs a consumer over them.

    Args:
        queue: Queue to poll
        consumer: Consumer whose results decide ack/nack
        batch_size: Maximum messages per receive
        poll_interval_seconds: Sleep between polls when the queue is empty
        instance_id: Ordinal within a worker pool (for log correlation)
        shutdown_event: Stops the loop once set (after the current batch)
        max_batches: Stop after this many non-empty batches (None = unlimited)

    Example:
        >>> worker = QueueWorker(uploads_queue, UploadLoggerConsumer(store))
        >>> task = asyncio.create_task(worker.start())
        >>> ...
        >>> await worker.stop()
    """

    def __init__(
        self,
        queue: DurableQueue,
        consumer: EventConsumer,
        batch_size: int = DEFAULT_BATCH_SIZE,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        instance_id: int | None = None,
        shutdown_event: asyncio.Event | None = None,
        max_batches: int | None = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.queue = queue
        self.consumer = consumer
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.instance_id = instance_id
        self.max_batches = max_batches
        self.worker_id = generate_worker_id(
            queue.name, str(instance_id) if instance_id is not None else None
        )
        self._shutdown_event = shutdown_event or asyncio.Event()
        self._running = False
        self._batch_count = 0
        self.messages_processed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the poll loop until stop() is called or the shutdown event is set."""
        if self._running:
            logger.warning("Worker already running, ignoring duplicate start call")
            return

        self._running = True
        with LogContext(stage=self.queue.name, worker_id=self.worker_id):
            log_with_context(
                logger,
                logging.INFO,
                "Starting queue worker",
                queue=self.queue.name,
                consumer=self.consumer.name,
                batch_size=self.batch_size,
            )

            try:
                await self._poll_loop()
            except asyncio.CancelledError:
                logger.info("Worker loop cancelled")
                raise
            finally:
                self._running = False
                log_with_context(
                    logger,
                    logging.INFO,
                    "Queue worker stopped",
                    queue=self.queue.name,
                    consumer=self.consumer.name,
                    messages_processed=self.messages_processed,
                )

    async def stop(self) -> None:
        """Ask the loop to exit after the batch in progress. Safe to call repeatedly."""
        self._running = False
        self._shutdown_event.set()

    async def _poll_loop(self) -> None:
        while self._running and not self._shutdown_event.is_set():
            if self.max_batches is not None and self._batch_count >= self.max_batches:
                log_with_context(
                    logger,
                    logging.INFO,
                    "Reached max_batches limit, stopping worker",
                    queue=self.queue.name,
                    batch_size=self.batch_size,
                )
                return

            try:
                processed = await self.process_batch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_exception(logger, e, "Error in worker poll loop", queue=self.queue.name)
                processed = 0

            if processed == 0:
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=self.poll_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass

    async def process_batch(self) -> int:
        """Receive one batch and settle every message in it.

        Returns:
            Number of messages handled
        """
        messages = self.queue.receive(self.batch_size)
        if not messages:
            return 0

        self._batch_count += 1
        for message in messages:
            await self._process_message(message)
        return len(messages)

    async def run_until_empty(self, max_batches: int | None = None) -> int:
        """Process batches until the queue holds nothing visible.

        In-flight messages from other holders are left to their deadlines.

        Returns:
            Number of messages handled
        """
        handled = 0
        batches = 0
        while max_batches is None or batches < max_batches:
            processed = await self.process_batch()
            if processed == 0:
                break
            handled += processed
            batches += 1
        return handled

    async def _process_message(self, message: QueuedMessage) -> None:
        with MessageLogContext(
            queue=self.queue.name,
            message_id=message.message_id,
            delivery_count=message.delivery_count,
            subject_key=message.event.subject_key or None,
        ):
            log_with_context(logger, logging.DEBUG, "Processing message", event_id=message.event.id)

            start_time = time.perf_counter()
            try:
                result = await self.consumer.handle(message.event)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Consumer raised while handling message",
                    level=logging.WARNING,
                    consumer=self.consumer.name,
                    event_id=message.event.id,
                )
                result = result_from_exception(e)
            duration = time.perf_counter() - start_time

            record_handler_outcome(self.consumer.name, result.outcome.value, duration)
            log_handler_result(
                logger,
                self.consumer.name,
                message.event,
                result,
                duration_ms=round(duration * 1000, 2),
            )
            self._settle(message, result)
            self.messages_processed += 1

    def _settle(self, message: QueuedMessage, result: HandlerResult) -> None:
        handle = message.receipt_handle or ""

        if result.outcome is HandlerOutcome.SUCCESS:
            self.queue.ack(handle)
            return

        if result.outcome is HandlerOutcome.TRANSIENT_FAILURE:
            self.queue.nack(handle, result.error)
            return

        policy = self.consumer.permanent_failure_policy
        if policy is PermanentFailurePolicy.RETRY_UNTIL_DEAD_LETTER:
            self.queue.nack(handle, result.error)
            return

        if self.queue.ack(handle):
            log_with_context(
                logger,
                logging.WARNING,
                "Dropping message after permanent failure",
                consumer=self.consumer.name,
                policy=policy.value,
                event_id=message.event.id,
                error=result.error_message,
            )


async def run_worker_pool(
    workers: list[QueueWorker],
    shutdown_event: asyncio.Event,
) -> None:
    """Run workers as tasks until the shutdown event is set, then stop them all."""
    tasks = [
        asyncio.create_task(w.start(), name=f"worker-{w.worker_id}") for w in workers
    ]
    log_with_context(logger, logging.INFO, "Worker pool started", worker_count=len(workers))

    try:
        await shutdown_event.wait()
    finally:
        for worker in workers:
            await worker.stop()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for worker, outcome in zip(workers, results):
            if isinstance(outcome, Exception) and not isinstance(outcome, asyncio.CancelledError):
                log_exception(logger, outcome, "Worker exited with error", worker=worker.worker_id)
        logger.info("Worker pool stopped")
