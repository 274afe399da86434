"""Consumer base class and shared helpers.

A consumer turns one Event into a HandlerResult. It never raises for
expected failures: validation problems come back as PERMANENT_FAILURE and
store outages as TRANSIENT_FAILURE. What happens next (ack, nack or drop)
is decided by whoever invoked the consumer, using the consumer's
``permanent_failure_policy`` for permanent failures.
"""

import logging
from abc import ABC, abstractmethod

from core.errors.exceptions import SinkError, wrap_exception
from core.logging.utilities import log_exception, log_with_context
from upload_pipeline.common.metrics import record_notification
from upload_pipeline.common.types import (
    Event,
    HandlerOutcome,
    HandlerResult,
    PermanentFailurePolicy,
)
from upload_pipeline.stores.notifications import NotificationSink

logger = logging.getLogger(__name__)


class EventConsumer(ABC):
    """Base class for queue and direct consumers."""

    name: str = "consumer"
    permanent_failure_policy: PermanentFailurePolicy = PermanentFailurePolicy.ACK_AND_DROP

    @abstractmethod
    async def handle(self, event: Event) -> HandlerResult:
        """Process one event and report the outcome."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, policy={self.permanent_failure_policy.value})"


def result_from_exception(exc: Exception) -> HandlerResult:
    """Convert an exception into a HandlerResult by error classification.

    UNKNOWN errors are treated as transient so the message gets another try.
    """
    error = wrap_exception(exc)
    if error.is_retryable:
        return HandlerResult(HandlerOutcome.TRANSIENT_FAILURE, error, error.category)
    return HandlerResult(HandlerOutcome.PERMANENT_FAILURE, error, error.category)


async def send_notification(
    sink: NotificationSink,
    notifier: str,
    to: str,
    subject: str,
    body: str,
    key: str | None = None,
) -> bool:
    """Send through the sink, logging and swallowing any failure.

    Returns:
        True if the sink accepted the notification
    """
    try:
        await sink.send(to, subject, body)
    except SinkError as e:
        record_notification(notifier, success=False)
        log_exception(
            logger,
            e,
            "Notification failed",
            level=logging.WARNING,
            include_traceback=False,
            notifier=notifier,
            recipient=to,
            subject=subject,
            key=key,
        )
        return False
    except Exception as e:
        record_notification(notifier, success=False)
        log_exception(
            logger,
            e,
            "Unexpected error sending notification",
            notifier=notifier,
            recipient=to,
            subject=subject,
            key=key,
        )
        return False

    record_notification(notifier, success=True)
    log_with_context(
        logger,
        logging.INFO,
        "Notification sent",
        notifier=notifier,
        recipient=to,
        subject=subject,
        key=key,
    )
    return True
