"""Shared fixtures for upload pipeline tests."""

import pytest

from config.config import settings_from_dict
from tests.upload_pipeline.helpers import RECIPIENT, FakeClock
from upload_pipeline.source.adapter import metadata_event, storage_event
from upload_pipeline.stores.catalog import InMemoryCatalogStore
from upload_pipeline.stores.notifications import InMemoryNotificationSink


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryCatalogStore()


@pytest.fixture
def sink():
    return InMemoryNotificationSink(sender="noreply@example.com")


@pytest.fixture
def settings():
    return settings_from_dict(
        {
            "notifications": {"recipient": RECIPIENT},
            "sink": {"backend": "memory"},
            "queues": {
                "uploads": {"max_attempts": 3, "poll_interval_seconds": 0.01},
                "metadata": {"max_attempts": 3, "poll_interval_seconds": 0.01},
                "rejections": {"max_attempts": 3, "poll_interval_seconds": 0.01},
            },
        }
    )


@pytest.fixture
def upload_event():
    return storage_event("photo.png")


@pytest.fixture
def caption_event():
    return metadata_event("Caption", "photo.png", "Sunset over the bay", message_id="sns-1")
