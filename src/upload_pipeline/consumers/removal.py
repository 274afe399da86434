"""Removal handler: deletes catalog records for removed uploads."""

import logging

from core.errors.exceptions import MalformedMessageError, StoreError
from core.logging.utilities import log_with_context
from upload_pipeline.common.types import Event, EventKind, HandlerResult
from upload_pipeline.consumers.base import EventConsumer, result_from_exception
from upload_pipeline.stores.catalog import CatalogStore

logger = logging.getLogger(__name__)


class RemovalHandler(EventConsumer):
    """Direct subscriber for UPLOAD_REMOVED events. Deleting twice is harmless."""

    name = "removal-handler"

    def __init__(self, store: CatalogStore):
        self.store = store

    async def handle(self, event: Event) -> HandlerResult:
        if event.kind is not EventKind.UPLOAD_REMOVED:
            return HandlerResult.success()
        if not event.subject_key:
            return HandlerResult.permanent(
                MalformedMessageError("Removal event has no subject key", ["subject_key"])
            )

        try:
            removed = await self.store.delete(event.subject_key)
        except StoreError as e:
            return HandlerResult.transient(e)
        except Exception as e:
            return result_from_exception(e)

        log_with_context(
            logger,
            logging.INFO,
            "Catalog record removed" if removed else "Catalog record already absent",
            consumer=self.name,
            **event.log_fields(),
        )
        return HandlerResult.success()
