"""Notification sinks used by the confirmation and rejection notifiers.

Supported backends:
- "memory": keeps every sent notification in a list (tests, dry runs)
- "log": writes one structured log line per notification

Sinks raise SinkError when delivery fails. Notifiers log and swallow it.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from config.config import NotificationSettings, SinkSettings
from core.errors.exceptions import SinkError
from core.logging.utilities import log_with_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    sender: str
    to: str
    subject: str
    body: str


class NotificationSink(Protocol):
    """Protocol for notification delivery backends."""

    async def send(self, to: str, subject: str, body: str) -> None:
        """Deliver one notification.

        Raises:
            SinkError: If the notification could not be delivered
        """
        ...


class InMemoryNotificationSink:
    """Collects notifications in memory."""

    def __init__(self, sender: str = ""):
        self.sender = sender
        self.sent: list[Notification] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        if not to:
            raise SinkError("Notification recipient is empty", context={"subject": subject})
        self.sent.append(Notification(self.sender, to, subject, body))

    def subjects(self) -> list[str]:
        return [n.subject for n in self.sent]

    def bodies(self) -> list[str]:
        return [n.body for n in self.sent]


class LoggingNotificationSink:
    """Writes notifications to the log instead of a mail service."""

    def __init__(self, sender: str = ""):
        self.sender = sender

    async def send(self, to: str, subject: str, body: str) -> None:
        if not to:
            raise SinkError("Notification recipient is empty", context={"subject": subject})
        log_with_context(
            logger,
            logging.INFO,
            f"Notification: {body}",
            sender=self.sender,
            recipient=to,
            subject=subject,
        )


def create_notification_sink(
    settings: SinkSettings,
    notifications: NotificationSettings,
) -> NotificationSink:
    """Create the sink backend named in settings.

    Raises:
        ValueError: If the backend is unknown
    """
    if settings.backend == "memory":
        return InMemoryNotificationSink(sender=notifications.sender)
    if settings.backend == "log":
        return LoggingNotificationSink(sender=notifications.sender)
    raise ValueError(
        f"Unknown notification sink backend: '{settings.backend}'. Must be 'memory' or 'log'."
    )
