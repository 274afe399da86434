"""Pipeline consumers.

Queue consumers (run by QueueWorker):
    UploadLoggerConsumer     - uploads queue, nacks permanent failures
    MetadataUpdaterConsumer  - metadata queue, drops permanent failures
    RejectionNotifier        - uploads dead-letter queue

Direct and change-feed consumers:
    RemovalHandler           - DIRECT topic subscription
    ConfirmationNotifier     - catalog store change feed
"""

from upload_pipeline.consumers.base import EventConsumer, result_from_exception
from upload_pipeline.consumers.confirmation import ConfirmationNotifier
from upload_pipeline.consumers.metadata_updater import MetadataUpdaterConsumer
from upload_pipeline.consumers.rejection import RejectionNotifier
from upload_pipeline.consumers.removal import RemovalHandler
from upload_pipeline.consumers.upload_logger import UploadLoggerConsumer

__all__ = [
    "EventConsumer",
    "result_from_exception",
    "UploadLoggerConsumer",
    "MetadataUpdaterConsumer",
    "ConfirmationNotifier",
    "RejectionNotifier",
    "RemovalHandler",
]
