"""Event source adapter."""

from upload_pipeline.source.adapter import (
    DecodeResult,
    DroppedElement,
    EventSourceAdapter,
    metadata_event,
    storage_event,
)

__all__ = [
    "EventSourceAdapter",
    "DecodeResult",
    "DroppedElement",
    "storage_event",
    "metadata_event",
]
