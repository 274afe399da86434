"""Queue message context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_message_queue: ContextVar[str] = ContextVar("message_queue", default="")
_message_id: ContextVar[str] = ContextVar("message_id", default="")
_delivery_count: ContextVar[int] = ContextVar("delivery_count", default=-1)
_subject_key: ContextVar[str] = ContextVar("subject_key", default="")


def set_message_context(
    queue: Optional[str] = None,
    message_id: Optional[str] = None,
    delivery_count: Optional[int] = None,
    subject_key: Optional[str] = None,
) -> None:
    """
    Set queue message context variables for structured logging.

    Args:
        queue: Durable queue name
        message_id: Queued message identifier
        delivery_count: Delivery attempt number of the current receive
        subject_key: Resource identifier of the carried event
    """
    if queue is not None:
        _message_queue.set(queue)
    if message_id is not None:
        _message_id.set(message_id)
    if delivery_count is not None:
        _delivery_count.set(delivery_count)
    if subject_key is not None:
        _subject_key.set(subject_key)


def get_message_context() -> Dict[str, Any]:
    """
    Get current queue message logging context.

    Returns:
        Dictionary with the fields that are currently set
    """
    context: Dict[str, Any] = {}

    queue = _message_queue.get()
    if queue:
        context["message_queue"] = queue

    message_id = _message_id.get()
    if message_id:
        context["message_id"] = message_id

    delivery_count = _delivery_count.get()
    if delivery_count >= 0:
        context["delivery_count"] = delivery_count

    subject_key = _subject_key.get()
    if subject_key:
        context["subject_key"] = subject_key

    return context


def clear_message_context() -> None:
    """Clear all queue message logging context variables."""
    _message_queue.set("")
    _message_id.set("")
    _delivery_count.set(-1)
    _subject_key.set("")


class MessageLogContext:
    """
    Context manager for message processing with automatic context setting.

    Usage:
        with MessageLogContext(queue="uploads", message_id=msg.message_id):
            # All logs in this block will include message context
            process_message()
    """

    def __init__(
        self,
        queue: Optional[str] = None,
        message_id: Optional[str] = None,
        delivery_count: Optional[int] = None,
        subject_key: Optional[str] = None,
    ):
        self.new_context = {
            "queue": queue,
            "message_id": message_id,
            "delivery_count": delivery_count,
            "subject_key": subject_key,
        }
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "MessageLogContext":
        # Save current context
        self.old_context = {
            "queue": _message_queue.get(),
            "message_id": _message_id.get(),
            "delivery_count": _delivery_count.get(),
            "subject_key": _subject_key.get(),
        }

        for key, value in self.new_context.items():
            if value is not None:
                set_message_context(**{key: value})

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Restore old context
        set_message_context(**self.old_context)
        return False
