"""Pipeline wiring: topic, queues, subscriptions, workers and consumers.

    storage change -> adapter -> topic
      topic -[QUEUED event_kind=UPLOAD_CREATED]-> uploads -> upload logger
      topic -[QUEUED metadata_type in {...}]----> metadata -> metadata updater
      topic -[DIRECT event_kind=UPLOAD_REMOVED]-> removal handler
      catalog change feed (INSERT) -> confirmation notifier
      uploads exhausted  -> uploads-dlq  -> rejection notifier
      metadata exhausted -> metadata-dlq (parked for manual inspection)
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from config.config import PipelineSettings
from core.logging.utilities import log_with_context
from upload_pipeline.common.types import Event, EventKind, PublishReceipt
from upload_pipeline.consumers import (
    ConfirmationNotifier,
    EventConsumer,
    MetadataUpdaterConsumer,
    RejectionNotifier,
    RemovalHandler,
    UploadLoggerConsumer,
)
from upload_pipeline.queue.durable_queue import DurableQueue
from upload_pipeline.queue.worker import QueueWorker, run_worker_pool
from upload_pipeline.source.adapter import DroppedElement, EventSourceAdapter
from upload_pipeline.stores.catalog import CatalogStore, create_catalog_store
from upload_pipeline.stores.notifications import NotificationSink, create_notification_sink
from upload_pipeline.topic.bus import Subscription, Topic
from upload_pipeline.topic.filters import SubscriptionFilter

logger = logging.getLogger(__name__)

UPLOADS_QUEUE = "uploads"
UPLOADS_DLQ = "uploads-dlq"
METADATA_QUEUE = "metadata"
METADATA_DLQ = "metadata-dlq"
REJECTIONS_SETTINGS = "rejections"


@dataclass
class IngestReport:
    receipts: list[PublishReceipt] = field(default_factory=list)
    dropped: list[DroppedElement] = field(default_factory=list)

    @property
    def published(self) -> int:
        return len(self.receipts)

    @property
    def delivery_failures(self) -> int:
        return sum(r.failed for r in self.receipts)


class UploadPipeline:
    """The assembled pipeline.

    Args:
        settings: Validated pipeline settings
        store: Catalog store (default: built from settings.store)
        sink: Notification sink (default: built from settings.sink)
        clock: Monotonic clock shared by every queue
    """

    def __init__(
        self,
        settings: PipelineSettings,
        store: CatalogStore | None = None,
        sink: NotificationSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.store = store if store is not None else create_catalog_store(settings.store)
        self.sink = (
            sink
            if sink is not None
            else create_notification_sink(settings.sink, settings.notifications)
        )
        self.adapter = EventSourceAdapter()
        self.topic = Topic()

        uploads = settings.queue(UPLOADS_QUEUE)
        metadata = settings.queue(METADATA_QUEUE)
        rejections = settings.queue(REJECTIONS_SETTINGS)

        self.uploads_dlq = DurableQueue(
            UPLOADS_DLQ,
            max_attempts=rejections.max_attempts,
            visibility_timeout_seconds=rejections.visibility_timeout_seconds,
            clock=clock,
        )
        self.uploads_queue = DurableQueue(
            UPLOADS_QUEUE,
            max_attempts=uploads.max_attempts,
            visibility_timeout_seconds=uploads.visibility_timeout_seconds,
            dead_letter_queue=self.uploads_dlq,
            clock=clock,
        )
        self.metadata_dlq = DurableQueue(
            METADATA_DLQ,
            max_attempts=metadata.max_attempts,
            visibility_timeout_seconds=metadata.visibility_timeout_seconds,
            clock=clock,
        )
        self.metadata_queue = DurableQueue(
            METADATA_QUEUE,
            max_attempts=metadata.max_attempts,
            visibility_timeout_seconds=metadata.visibility_timeout_seconds,
            dead_letter_queue=self.metadata_dlq,
            clock=clock,
        )

        recipient = settings.notifications.recipient
        self.upload_logger = UploadLoggerConsumer(self.store, settings.accepted_file_types)
        self.metadata_updater = MetadataUpdaterConsumer(self.store, settings.metadata_types)
        self.removal_handler = RemovalHandler(self.store)
        self.rejection_notifier = RejectionNotifier(self.sink, recipient)
        self.confirmation_notifier = ConfirmationNotifier(self.sink, recipient)

        self.store.subscribe(self.confirmation_notifier.handle)

        self.topic.subscribe(
            Subscription.queued(
                self.upload_logger.name,
                self.uploads_queue,
                SubscriptionFilter.where(event_kind=[EventKind.UPLOAD_CREATED.value]),
            )
        )
        self.topic.subscribe(
            Subscription.queued(
                self.metadata_updater.name,
                self.metadata_queue,
                SubscriptionFilter.where(metadata_type=settings.metadata_types),
            )
        )
        self.topic.subscribe(
            Subscription.direct(
                self.removal_handler.name,
                self.removal_handler,
                SubscriptionFilter.where(event_kind=[EventKind.UPLOAD_REMOVED.value]),
            )
        )

        self.shutdown_event = asyncio.Event()
        self.workers: list[QueueWorker] = [
            *self._build_workers(self.uploads_queue, self.upload_logger, UPLOADS_QUEUE),
            *self._build_workers(self.metadata_queue, self.metadata_updater, METADATA_QUEUE),
            *self._build_workers(self.uploads_dlq, self.rejection_notifier, REJECTIONS_SETTINGS),
        ]

    def _build_workers(
        self, queue: DurableQueue, consumer: EventConsumer, settings_name: str
    ) -> list[QueueWorker]:
        queue_settings = self.settings.queue(settings_name)
        return [
            QueueWorker(
                queue,
                consumer,
                batch_size=queue_settings.batch_size,
                poll_interval_seconds=queue_settings.poll_interval_seconds,
                instance_id=i if queue_settings.worker_count > 1 else None,
                shutdown_event=self.shutdown_event,
            )
            for i in range(queue_settings.worker_count)
        ]

    @property
    def queues(self) -> dict[str, DurableQueue]:
        return {
            q.name: q
            for q in (self.uploads_queue, self.uploads_dlq, self.metadata_queue, self.metadata_dlq)
        }

    async def publish(self, event: Event) -> PublishReceipt:
        return await self.topic.publish(event)

    async def ingest(self, raw: Any) -> IngestReport:
        """Decode a raw notification payload and publish every event in it."""
        decoded = self.adapter.decode_batch(raw)
        report = IngestReport(dropped=list(decoded.dropped))
        for event in decoded.events:
            report.receipts.append(await self.publish(event))

        log_with_context(
            logger,
            logging.INFO,
            "Ingested notification batch",
            records_processed=report.published,
            records_dropped=len(report.dropped),
            failed=report.delivery_failures,
        )
        return report

    async def drain(self, max_rounds: int | None = None) -> int:
        """Run every worker until no queue has anything visible left.

        Workers run in pipeline order each round, so messages dead-lettered
        by the uploads queue are picked up by the rejection notifier in the
        same round. Messages still in flight elsewhere are left alone. Change
        notifications triggered by the round are awaited before returning.

        Returns:
            Number of messages handled
        """
        handled = 0
        rounds = 0
        while max_rounds is None or rounds < max_rounds:
            round_handled = 0
            for worker in self.workers:
                round_handled += await worker.run_until_empty()
            rounds += 1
            handled += round_handled
            if round_handled == 0:
                break
        await self.store.wait_for_listeners()
        return handled

    async def run(self) -> None:
        """Run all workers until shutdown_event is set."""
        await run_worker_pool(self.workers, self.shutdown_event)
        await self.store.wait_for_listeners(timeout_seconds=30)

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    async def snapshot(self) -> dict[str, Any]:
        """Queue depths and catalog contents, for reporting."""
        catalog = {}
        for key in await self.store.keys():
            catalog[key] = await self.store.get(key)
        return {
            "queues": {
                name: {"visible": depth.visible, "in_flight": depth.in_flight}
                for name, depth in ((n, q.depth()) for n, q in self.queues.items())
            },
            "catalog": catalog,
        }

    async def close(self) -> None:
        await self.store.close()
