"""Metadata updater: applies caption/date/photographer values to catalog records.

Invalid metadata messages are dropped (acknowledged) rather than retried,
because the same payload would fail identically on every delivery. Store
failures, including an update that arrives before the upload was logged,
are transient and go back to the queue.
"""

import logging
from collections.abc import Iterable

from core.errors.exceptions import MalformedMessageError, StoreError, ValidationError
from core.logging.utilities import log_with_context
from upload_pipeline.common.types import Event, HandlerResult, PermanentFailurePolicy
from upload_pipeline.consumers.base import EventConsumer, result_from_exception
from upload_pipeline.stores.catalog import CatalogStore

logger = logging.getLogger(__name__)

DEFAULT_METADATA_TYPES = ("Caption", "Date", "Photographer")
METADATA_TYPE_ATTR = "metadata_type"
REQUIRED_PAYLOAD_FIELDS = ("id", "value")


class MetadataUpdaterConsumer(EventConsumer):
    name = "metadata-updater"
    permanent_failure_policy = PermanentFailurePolicy.ACK_AND_DROP

    def __init__(
        self,
        store: CatalogStore,
        metadata_types: Iterable[str] = DEFAULT_METADATA_TYPES,
    ):
        self.store = store
        self.metadata_types = frozenset(metadata_types)

    def _validate(self, event: Event) -> tuple[str, str, str]:
        metadata_type = event.attributes.get(METADATA_TYPE_ATTR)
        if not metadata_type:
            raise MalformedMessageError(
                "Metadata event has no metadata_type attribute", [METADATA_TYPE_ATTR]
            )
        if metadata_type not in self.metadata_types:
            raise ValidationError(
                f"Unsupported metadata_type: {metadata_type}",
                context={"metadata_type": metadata_type},
            )

        missing = [f for f in REQUIRED_PAYLOAD_FIELDS if not event.payload.get(f)]
        if missing:
            raise MalformedMessageError(
                f"Metadata payload missing required fields: {', '.join(missing)}", missing
            )
        return metadata_type, event.payload["id"], event.payload["value"]

    async def handle(self, event: Event) -> HandlerResult:
        try:
            metadata_type, key, value = self._validate(event)
        except ValidationError as e:
            return HandlerResult.permanent(e)

        try:
            changed = await self.store.update(key, metadata_type, value)
        except StoreError as e:
            return HandlerResult.transient(e)
        except Exception as e:
            return result_from_exception(e)

        log_with_context(
            logger,
            logging.INFO,
            "Metadata applied" if changed else "Metadata already up to date",
            consumer=self.name,
            key=key,
            metadata_type=metadata_type,
            event_id=event.id,
        )
        return HandlerResult.success()
