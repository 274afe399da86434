"""In-process durable queue with visibility deadlines and dead-lettering.

Message lifecycle:

    VISIBLE --receive--> IN_FLIGHT --ack--> ACKED (removed)
                             |
                             +--nack / deadline--> VISIBLE (redelivery)
                             |                     or DEAD_LETTERED when the
                             |                     retry budget is spent

Each receive issues a fresh receipt handle. Only the current handle can ack
or nack a message; handles from expired or already-settled deliveries are
stale and their ack/nack is a logged no-op. This is what keeps a message
from having two in-flight holders at once.

All operations are synchronous and run under one lock per queue, so they
are atomic for asyncio tasks and threads alike. Callers only ever see
QueuedMessage snapshots.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import NamedTuple

from core.logging.utilities import log_with_context, truncate_error_message
from upload_pipeline.common.metrics import (
    record_dead_lettered,
    record_message_dropped,
    update_queue_depth,
)
from upload_pipeline.common.types import Event, MessageState, QueuedMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 30.0

# Message attributes stamped on dead-lettered messages
DEAD_LETTER_SOURCE_ATTR = "dead_letter_source"
FINAL_DELIVERY_COUNT_ATTR = "final_delivery_count"
LAST_ERROR_ATTR = "last_error"

VISIBILITY_EXPIRED_ERROR = "visibility timeout expired"


class QueueDepth(NamedTuple):
    visible: int
    in_flight: int

    @property
    def total(self) -> int:
        return self.visible + self.in_flight


@dataclass
class _StoredMessage:
    """Mutable queue-internal message record. Never handed to callers."""

    message_id: str
    event: Event
    first_enqueued_at: float
    visible_at: float
    attributes: dict[str, str] = field(default_factory=dict)
    delivery_count: int = 0
    state: MessageState = MessageState.VISIBLE
    receipt_handle: str | None = None
    last_error: str | None = None

    def snapshot(self) -> QueuedMessage:
        return QueuedMessage(
            message_id=self.message_id,
            event=self.event,
            delivery_count=self.delivery_count,
            first_enqueued_at=self.first_enqueued_at,
            visible_at=self.visible_at,
            state=self.state,
            receipt_handle=self.receipt_handle,
            attributes=dict(self.attributes),
        )


class DurableQueue:
    """Bounded-retry queue with an optional dead-letter queue.

    Args:
        name: Queue name used in logs and metrics
        max_attempts: Deliveries allowed before a message is dead-lettered
        visibility_timeout_seconds: How long a received message stays hidden
        dead_letter_queue: Where exhausted messages go. Without one they are
            dropped with an error log.
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        visibility_timeout_seconds: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        dead_letter_queue: "DurableQueue | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if visibility_timeout_seconds <= 0:
            raise ValueError(
                f"visibility_timeout_seconds must be > 0, got {visibility_timeout_seconds}"
            )
        self.name = name
        self.max_attempts = max_attempts
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self._dead_letter_queue: DurableQueue | None = None
        self.dead_letter_queue = dead_letter_queue
        self._clock = clock
        self._lock = threading.Lock()
        self._messages: OrderedDict[str, _StoredMessage] = OrderedDict()
        self._handles: dict[str, str] = {}

    @property
    def dead_letter_queue(self) -> "DurableQueue | None":
        return self._dead_letter_queue

    @dead_letter_queue.setter
    def dead_letter_queue(self, queue: "DurableQueue | None") -> None:
        # Dead-lettering enqueues into the DLQ while holding this queue's lock,
        # so a cycle anywhere along the chain would deadlock
        node = queue
        while node is not None:
            if node is self:
                raise ValueError(
                    f"Dead-letter chain of queue '{self.name}' loops back to itself "
                    f"via '{queue.name}'"
                )
            node = node.dead_letter_queue
        self._dead_letter_queue = queue

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __repr__(self) -> str:
        depth = self.depth()
        return (
            f"DurableQueue(name={self.name!r}, visible={depth.visible}, "
            f"in_flight={depth.in_flight}, max_attempts={self.max_attempts})"
        )

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def enqueue(self, event: Event, attributes: Mapping[str, str] | None = None) -> str:
        """Add an event as a new VISIBLE message and return its message id."""
        now = self._clock()
        message = _StoredMessage(
            message_id=uuid.uuid4().hex,
            event=event,
            first_enqueued_at=now,
            visible_at=now,
            attributes=dict(attributes or {}),
        )
        with self._lock:
            self._messages[message.message_id] = message
            self._publish_depth()

        log_with_context(
            logger,
            logging.DEBUG,
            "Message enqueued",
            queue=self.name,
            message_id=message.message_id,
            event_id=event.id,
        )
        return message.message_id

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    def receive(self, batch_size: int = 1) -> list[QueuedMessage]:
        """Take up to ``batch_size`` visible messages, oldest first.

        Overdue in-flight messages are expired first so they can be picked
        up in the same call. Each returned snapshot carries a receipt handle
        valid until the message is settled or its deadline passes.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        with self._lock:
            now = self._clock()
            self._expire_overdue_locked(now)

            batch: list[QueuedMessage] = []
            for message in self._messages.values():
                if len(batch) >= batch_size:
                    break
                if message.state is not MessageState.VISIBLE or message.visible_at > now:
                    continue

                message.delivery_count += 1
                message.state = MessageState.IN_FLIGHT
                message.visible_at = now + self.visibility_timeout_seconds
                message.receipt_handle = uuid.uuid4().hex
                self._handles[message.receipt_handle] = message.message_id
                batch.append(message.snapshot())

            if batch:
                self._publish_depth()

        return batch

    def ack(self, receipt_handle: str) -> bool:
        """Settle a delivery successfully, removing the message for good.

        Returns:
            True if the handle was current, False for unknown or stale handles
        """
        with self._lock:
            message = self._take_in_flight(receipt_handle)
            if message is None:
                self._log_stale("ack", receipt_handle)
                return False

            message.state = MessageState.ACKED
            del self._messages[message.message_id]
            self._publish_depth()

        log_with_context(
            logger,
            logging.DEBUG,
            "Message acknowledged",
            queue=self.name,
            message_id=message.message_id,
            delivery_count=message.delivery_count,
        )
        return True

    def nack(self, receipt_handle: str, error: Exception | str | None = None) -> bool:
        """Give a delivery back: redeliver, or dead-letter if the budget is spent.

        Returns:
            True if the handle was current, False for unknown or stale handles
        """
        with self._lock:
            message = self._take_in_flight(receipt_handle)
            if message is None:
                self._log_stale("nack", receipt_handle)
                return False

            self._release(message, error, reason="nack")
            self._publish_depth()
        return True

    def expire_overdue(self) -> int:
        """Release every in-flight message whose visibility deadline passed.

        Returns:
            Number of messages released (redelivered or dead-lettered)
        """
        with self._lock:
            expired = self._expire_overdue_locked(self._clock())
            if expired:
                self._publish_depth()
            return expired

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def depth(self) -> QueueDepth:
        with self._lock:
            in_flight = sum(
                1 for m in self._messages.values() if m.state is MessageState.IN_FLIGHT
            )
            return QueueDepth(visible=len(self._messages) - in_flight, in_flight=in_flight)

    def peek(self) -> list[QueuedMessage]:
        """Snapshots of every held message in enqueue order. Does not deliver."""
        with self._lock:
            return [m.snapshot() for m in self._messages.values()]

    # -------------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # -------------------------------------------------------------------------

    def _take_in_flight(self, receipt_handle: str) -> _StoredMessage | None:
        message_id = self._handles.pop(receipt_handle, None)
        if message_id is None:
            return None
        message = self._messages.get(message_id)
        if (
            message is None
            or message.state is not MessageState.IN_FLIGHT
            or message.receipt_handle != receipt_handle
        ):
            return None
        message.receipt_handle = None
        return message

    def _expire_overdue_locked(self, now: float) -> int:
        overdue = [
            m
            for m in self._messages.values()
            if m.state is MessageState.IN_FLIGHT and m.visible_at <= now
        ]
        for message in overdue:
            if message.receipt_handle is not None:
                self._handles.pop(message.receipt_handle, None)
                message.receipt_handle = None
            log_with_context(
                logger,
                logging.WARNING,
                "Visibility deadline passed without settlement",
                queue=self.name,
                message_id=message.message_id,
                delivery_count=message.delivery_count,
            )
            self._release(message, VISIBILITY_EXPIRED_ERROR, reason="visibility_timeout")
        return len(overdue)

    def _release(
        self,
        message: _StoredMessage,
        error: Exception | str | None,
        reason: str,
    ) -> None:
        if error is not None:
            message.last_error = truncate_error_message(error)

        if message.delivery_count >= self.max_attempts:
            self._dead_letter(message, reason)
            return

        message.state = MessageState.VISIBLE
        message.visible_at = self._clock()
        log_with_context(
            logger,
            logging.INFO,
            "Message returned for redelivery",
            queue=self.name,
            message_id=message.message_id,
            delivery_count=message.delivery_count,
            max_attempts=self.max_attempts,
            reason=reason,
            error=message.last_error,
        )

    def _dead_letter(self, message: _StoredMessage, reason: str) -> None:
        del self._messages[message.message_id]
        message.state = MessageState.DEAD_LETTERED

        if self.dead_letter_queue is None:
            record_message_dropped(self.name)
            log_with_context(
                logger,
                logging.ERROR,
                "Retry budget exhausted and no dead-letter queue configured, dropping message",
                queue=self.name,
                message_id=message.message_id,
                event_id=message.event.id,
                delivery_count=message.delivery_count,
                max_attempts=self.max_attempts,
                reason=reason,
                error=message.last_error,
            )
            return

        attributes = dict(message.attributes)
        attributes[DEAD_LETTER_SOURCE_ATTR] = self.name
        attributes[FINAL_DELIVERY_COUNT_ATTR] = str(message.delivery_count)
        attributes[LAST_ERROR_ATTR] = message.last_error or ""
        dead_letter_id = self.dead_letter_queue.enqueue(message.event, attributes)

        record_dead_lettered(self.name)
        log_with_context(
            logger,
            logging.WARNING,
            "Retry budget exhausted, message moved to dead-letter queue",
            queue=self.name,
            dead_letter_queue=self.dead_letter_queue.name,
            message_id=message.message_id,
            event_id=message.event.id,
            delivery_count=message.delivery_count,
            max_attempts=self.max_attempts,
            reason=reason,
            error=message.last_error,
            dead_letter_message_id=dead_letter_id,
        )

    def _log_stale(self, operation: str, receipt_handle: str) -> None:
        log_with_context(
            logger,
            logging.INFO,
            f"Ignoring {operation} for unknown or stale receipt handle",
            queue=self.name,
            receipt_handle=receipt_handle,
        )

    def _publish_depth(self) -> None:
        in_flight = sum(1 for m in self._messages.values() if m.state is MessageState.IN_FLIGHT)
        update_queue_depth(self.name, len(self._messages) - in_flight, in_flight)
