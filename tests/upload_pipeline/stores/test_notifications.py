import logging

import pytest

from config.config import NotificationSettings, SinkSettings
from core.errors.exceptions import SinkError
from upload_pipeline.stores.notifications import (
    InMemoryNotificationSink,
    LoggingNotificationSink,
    Notification,
    create_notification_sink,
)


class TestInMemoryNotificationSink:
    async def test_records_notifications(self):
        sink = InMemoryNotificationSink(sender="noreply@example.com")
        await sink.send("ops@example.com", "Image Upload Confirmation", "photo.png uploaded")

        assert sink.sent == [
            Notification(
                "noreply@example.com",
                "ops@example.com",
                "Image Upload Confirmation",
                "photo.png uploaded",
            )
        ]
        assert sink.subjects() == ["Image Upload Confirmation"]
        assert sink.bodies() == ["photo.png uploaded"]

    async def test_empty_recipient_raises(self):
        sink = InMemoryNotificationSink()
        with pytest.raises(SinkError):
            await sink.send("", "subject", "body")
        assert sink.sent == []


class TestLoggingNotificationSink:
    async def test_logs_notification(self, caplog):
        sink = LoggingNotificationSink(sender="noreply@example.com")
        with caplog.at_level(logging.INFO):
            await sink.send("ops@example.com", "File Upload Rejected", "doc.pdf rejected")

        record = caplog.records[-1]
        assert record.getMessage() == "Notification: doc.pdf rejected"
        assert record.recipient == "ops@example.com"
        assert record.subject == "File Upload Rejected"
        assert record.sender == "noreply@example.com"

    async def test_empty_recipient_raises(self):
        with pytest.raises(SinkError):
            await LoggingNotificationSink().send("", "subject", "body")


class TestCreateNotificationSink:
    def test_memory_uses_sender(self):
        sink = create_notification_sink(
            SinkSettings(backend="memory"), NotificationSettings(sender="me@example.com")
        )
        assert isinstance(sink, InMemoryNotificationSink)
        assert sink.sender == "me@example.com"

    def test_log(self):
        sink = create_notification_sink(SinkSettings(backend="log"), NotificationSettings())
        assert isinstance(sink, LoggingNotificationSink)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown notification sink backend"):
            create_notification_sink(SinkSettings(backend="ses"), NotificationSettings())
