"""Upload logger: records accepted uploads in the catalog.

Consumes UPLOAD_CREATED events from the uploads queue. Objects whose
extension is outside the accepted set are permanent failures, and this
consumer nacks them so they exhaust their retry budget and reach the
dead-letter queue, where the rejection notifier picks them up.
"""

import logging
from collections.abc import Iterable

from core.errors.exceptions import MalformedMessageError, StoreError, UnsupportedFileTypeError
from core.logging.utilities import log_with_context
from upload_pipeline.common.types import (
    Event,
    EventKind,
    HandlerResult,
    PermanentFailurePolicy,
)
from upload_pipeline.consumers.base import EventConsumer, result_from_exception
from upload_pipeline.stores.catalog import CatalogStore

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTED_FILE_TYPES = ("jpeg", "png")
IMAGE_NAME_FIELD = "image_name"


def file_type_of(key: str) -> str | None:
    """Lower-cased text after the last '.', or None when the key has no extension."""
    if "." not in key:
        return None
    extension = key.rsplit(".", 1)[1].lower()
    return extension or None


class UploadLoggerConsumer(EventConsumer):
    name = "upload-logger"
    permanent_failure_policy = PermanentFailurePolicy.RETRY_UNTIL_DEAD_LETTER

    def __init__(
        self,
        store: CatalogStore,
        accepted_file_types: Iterable[str] = DEFAULT_ACCEPTED_FILE_TYPES,
    ):
        self.store = store
        self.accepted_file_types = frozenset(t.lower() for t in accepted_file_types)

    async def handle(self, event: Event) -> HandlerResult:
        if event.kind is not EventKind.UPLOAD_CREATED:
            log_with_context(
                logger,
                logging.DEBUG,
                "Ignoring non-upload event",
                consumer=self.name,
                **event.log_fields(),
            )
            return HandlerResult.success()

        key = event.subject_key
        if not key:
            return HandlerResult.permanent(
                MalformedMessageError("Upload event has no subject key", ["subject_key"])
            )

        file_type = file_type_of(key)
        if file_type not in self.accepted_file_types:
            return HandlerResult.permanent(UnsupportedFileTypeError(key, file_type))

        try:
            changed = await self.store.put(key, {IMAGE_NAME_FIELD: key})
        except StoreError as e:
            return HandlerResult.transient(e)
        except Exception as e:
            return result_from_exception(e)

        log_with_context(
            logger,
            logging.INFO,
            "Catalog record written" if changed else "Catalog record already present",
            consumer=self.name,
            file_type=file_type,
            **event.log_fields(),
        )
        return HandlerResult.success()
