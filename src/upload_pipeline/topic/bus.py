"""Fan-out topic with attribute-filtered subscriptions.

Each published event is offered to every subscription. Subscriptions whose
filter matches receive it independently:

- QUEUED subscriptions get the event enqueued on their durable queue.
- DIRECT subscriptions have their consumer invoked right away, concurrently
  with the other direct subscribers.

A failing delivery is logged and counted in the receipt. It never affects
sibling deliveries and never raises out of publish(). DIRECT deliveries are
not retried.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from core.logging.utilities import log_exception, log_with_context
from upload_pipeline.common.logging import log_handler_result
from upload_pipeline.common.metrics import (
    record_event_published,
    record_handler_outcome,
    record_topic_delivery,
)
from upload_pipeline.common.types import DeliveryMode, Event, PublishReceipt
from upload_pipeline.consumers.base import EventConsumer, result_from_exception
from upload_pipeline.queue.durable_queue import DurableQueue
from upload_pipeline.topic.filters import SubscriptionFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """A named, filtered route from the topic to a queue or a consumer.

    Attributes:
        name: Unique subscription name
        target: DurableQueue for QUEUED delivery, EventConsumer for DIRECT
        filter: Attribute constraints an event must satisfy
        delivery_mode: QUEUED (pull) or DIRECT (push)
    """

    name: str
    target: DurableQueue | EventConsumer
    filter: SubscriptionFilter = field(default_factory=SubscriptionFilter.match_all)
    delivery_mode: DeliveryMode = DeliveryMode.QUEUED

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Subscription name must not be empty")
        if self.delivery_mode is DeliveryMode.QUEUED and not isinstance(self.target, DurableQueue):
            raise TypeError(f"QUEUED subscription '{self.name}' needs a DurableQueue target")
        if self.delivery_mode is DeliveryMode.DIRECT and not isinstance(self.target, EventConsumer):
            raise TypeError(f"DIRECT subscription '{self.name}' needs an EventConsumer target")

    @classmethod
    def queued(
        cls, name: str, queue: DurableQueue, subscription_filter: SubscriptionFilter | None = None
    ) -> "Subscription":
        return cls(name, queue, subscription_filter or SubscriptionFilter(), DeliveryMode.QUEUED)

    @classmethod
    def direct(
        cls,
        name: str,
        consumer: EventConsumer,
        subscription_filter: SubscriptionFilter | None = None,
    ) -> "Subscription":
        return cls(name, consumer, subscription_filter or SubscriptionFilter(), DeliveryMode.DIRECT)


class Topic:
    """In-process publish/subscribe bus."""

    def __init__(self, name: str = "uploads"):
        self.name = name
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def subscribe(self, subscription: Subscription) -> None:
        """Register a subscription.

        Raises:
            ValueError: If a subscription with the same name already exists
        """
        if subscription.name in self._subscriptions:
            raise ValueError(f"Subscription '{subscription.name}' already registered")
        self._subscriptions[subscription.name] = subscription
        log_with_context(
            logger,
            logging.INFO,
            "Subscription registered",
            subscription=subscription.name,
            delivery_mode=subscription.delivery_mode.value,
            filter=subscription.filter.describe(),
        )

    async def publish(self, event: Event) -> PublishReceipt:
        """Deliver ``event`` to every matching subscription."""
        record_event_published(event.kind.value)
        matched = [s for s in self._subscriptions.values() if s.filter.matches(event.attributes)]

        if not matched:
            log_with_context(
                logger,
                logging.DEBUG,
                "No subscription matched event",
                attributes=dict(event.attributes),
                **event.log_fields(),
            )
            return PublishReceipt(event_id=event.id, matched=0)

        failed = 0
        direct: list[Subscription] = []
        for subscription in matched:
            if subscription.delivery_mode is DeliveryMode.DIRECT:
                direct.append(subscription)
            elif not self._deliver_queued(subscription, event):
                failed += 1

        if direct:
            outcomes = await asyncio.gather(
                *(self._deliver_direct(s, event) for s in direct)
            )
            failed += sum(1 for ok in outcomes if not ok)

        log_with_context(
            logger,
            logging.DEBUG,
            "Event published",
            matched=len(matched),
            failed=failed,
            **event.log_fields(),
        )
        return PublishReceipt(event_id=event.id, matched=len(matched), failed=failed)

    def _deliver_queued(self, subscription: Subscription, event: Event) -> bool:
        queue = subscription.target
        try:
            queue.enqueue(event)
        except Exception as e:
            record_topic_delivery(subscription.name, DeliveryMode.QUEUED.value, success=False)
            log_exception(
                logger,
                e,
                "Queued delivery failed",
                subscription=subscription.name,
                queue=queue.name,
                **event.log_fields(),
            )
            return False
        record_topic_delivery(subscription.name, DeliveryMode.QUEUED.value)
        return True

    async def _deliver_direct(self, subscription: Subscription, event: Event) -> bool:
        consumer = subscription.target
        start_time = time.perf_counter()
        try:
            result = await consumer.handle(event)
        except Exception as e:
            log_exception(
                logger,
                e,
                "Direct subscriber raised",
                subscription=subscription.name,
                consumer=consumer.name,
                **event.log_fields(),
            )
            result = result_from_exception(e)

        record_handler_outcome(
            consumer.name, result.outcome.value, time.perf_counter() - start_time
        )
        record_topic_delivery(subscription.name, DeliveryMode.DIRECT.value, success=result.ok)
        if not result.ok:
            log_handler_result(logger, consumer.name, event, result, subscription=subscription.name)
        return result.ok
