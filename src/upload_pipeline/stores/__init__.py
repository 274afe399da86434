"""Catalog store and notification sink backends."""

from upload_pipeline.stores.catalog import (
    CatalogStore,
    ChangeListener,
    InMemoryCatalogStore,
    JsonCatalogStore,
    create_catalog_store,
)
from upload_pipeline.stores.notifications import (
    InMemoryNotificationSink,
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    create_notification_sink,
)

__all__ = [
    "CatalogStore",
    "ChangeListener",
    "InMemoryCatalogStore",
    "JsonCatalogStore",
    "create_catalog_store",
    "Notification",
    "NotificationSink",
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "create_notification_sink",
]
