"""Confirmation notifier, driven by the catalog change feed."""

import logging

from core.logging.utilities import log_with_context
from upload_pipeline.common.metrics import record_handler_outcome
from upload_pipeline.common.types import ChangeRecord, ChangeType, HandlerResult
from upload_pipeline.consumers.base import send_notification
from upload_pipeline.stores.notifications import NotificationSink

logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "Image Upload Confirmation"


class ConfirmationNotifier:
    """Sends "<key> uploaded" when a catalog record is first inserted.

    Register ``handle`` as a catalog store listener. MODIFY and REMOVE
    changes are ignored, and since an identical re-put emits no change at
    all, a redelivered upload never produces a second confirmation.
    """

    name = "confirmation-notifier"

    def __init__(self, sink: NotificationSink, recipient: str):
        self.sink = sink
        self.recipient = recipient

    async def handle(self, change: ChangeRecord) -> HandlerResult:
        if change.change_type is not ChangeType.INSERT:
            log_with_context(
                logger,
                logging.DEBUG,
                "Ignoring catalog change",
                notifier=self.name,
                key=change.key,
                change_type=change.change_type.value,
            )
            return HandlerResult.success()

        # Sink failures are logged inside send_notification and not retried
        await send_notification(
            self.sink,
            self.name,
            self.recipient,
            CONFIRMATION_SUBJECT,
            f"{change.key} uploaded",
            key=change.key,
        )
        record_handler_outcome(self.name, "success")
        return HandlerResult.success()
