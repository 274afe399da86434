"""Rejection notifier: consumes the uploads dead-letter queue."""

import logging

from core.errors.exceptions import MalformedMessageError
from upload_pipeline.common.types import Event, HandlerResult, PermanentFailurePolicy
from upload_pipeline.consumers.base import EventConsumer, send_notification
from upload_pipeline.stores.notifications import NotificationSink

logger = logging.getLogger(__name__)

REJECTION_SUBJECT = "File Upload Rejected"


class RejectionNotifier(EventConsumer):
    """Sends "<key> rejected" for each upload that exhausted its retries.

    A dead-lettered event without any usable key is dropped. Sink failures
    are logged and the message is still acknowledged.
    """

    name = "rejection-notifier"
    permanent_failure_policy = PermanentFailurePolicy.ACK_AND_DROP

    def __init__(self, sink: NotificationSink, recipient: str):
        self.sink = sink
        self.recipient = recipient

    async def handle(self, event: Event) -> HandlerResult:
        key = event.subject_key or event.payload.get("key", "")
        if not key:
            return HandlerResult.permanent(
                MalformedMessageError("Dead-lettered event has no subject key", ["subject_key"])
            )

        await send_notification(
            self.sink,
            self.name,
            self.recipient,
            REJECTION_SUBJECT,
            f"{key} rejected",
            key=key,
        )
        return HandlerResult.success()
