"""Message and result types shared by the topic, queues and consumers.

Events are the canonical unit flowing through the pipeline. They are
produced by the source adapter, fanned out by the topic, buffered by durable
queues and finally handled by consumers. Every other type in this module
describes what happens to an event along the way:

- **Event**: immutable upload/metadata notification
- **QueuedMessage**: snapshot of one delivery from a durable queue
- **HandlerResult**: what a consumer decided about an event
- **ChangeRecord**: one entry of the catalog store change feed
- **PublishReceipt**: summary of a single topic publish
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from core.types import ErrorCategory

__all__ = [
    "EventKind",
    "Event",
    "DeliveryMode",
    "MessageState",
    "QueuedMessage",
    "HandlerOutcome",
    "HandlerResult",
    "PermanentFailurePolicy",
    "ChangeType",
    "ChangeRecord",
    "PublishReceipt",
]


class EventKind(str, Enum):
    UPLOAD_CREATED = "UPLOAD_CREATED"
    UPLOAD_REMOVED = "UPLOAD_REMOVED"
    METADATA_SET = "METADATA_SET"


class Event(BaseModel):
    """Canonical pipeline event.

    Immutable once constructed. Attribute and payload mappings are copied
    during validation and exposed read-only, so neither the caller nor any
    subscriber sharing the instance can change them.

    Attributes:
        id: Unique event identifier (deterministic for storage notifications)
        kind: What happened to the subject
        subject_key: Object key the event is about (may be empty)
        attributes: Routing attributes evaluated by subscription filters
        payload: Consumer-specific string fields

    Example:
        >>> event = Event(
        ...     id="evt-1",
        ...     kind=EventKind.UPLOAD_CREATED,
        ...     subject_key="photo.png",
        ...     attributes={"event_kind": "UPLOAD_CREATED"},
        ... )
        >>> event.attributes["event_kind"]
        'UPLOAD_CREATED'
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique event identifier")
    kind: EventKind = Field(..., description="Event kind")
    subject_key: str = Field(default="", description="Object key the event refers to")
    attributes: Mapping[str, str] = Field(
        default_factory=dict, validate_default=True, description="Routing attributes"
    )
    payload: Mapping[str, str] = Field(
        default_factory=dict, validate_default=True, description="Consumer payload"
    )

    @field_validator("attributes", "payload", mode="after")
    @classmethod
    def _read_only(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("attributes", "payload")
    def _serialize_mapping(self, value: Mapping[str, str]) -> dict[str, str]:
        return dict(value)

    def log_fields(self) -> dict[str, Any]:
        """Identifiers worth attaching to every log line about this event."""
        return {
            "event_id": self.id,
            "event_kind": self.kind.value,
            "subject_key": self.subject_key or None,
        }


class DeliveryMode(str, Enum):
    DIRECT = "DIRECT"
    QUEUED = "QUEUED"


class MessageState(str, Enum):
    VISIBLE = "VISIBLE"
    IN_FLIGHT = "IN_FLIGHT"
    ACKED = "ACKED"
    DEAD_LETTERED = "DEAD_LETTERED"


@dataclass(frozen=True)
class QueuedMessage:
    """Read-only snapshot of a message owned by a durable queue.

    Attributes:
        message_id: Queue-assigned message identifier
        event: The buffered event
        delivery_count: Number of times the message has been received
        first_enqueued_at: Clock reading when the message was first enqueued
        visible_at: Clock reading when the message becomes (or became) visible
        state: Message state at snapshot time
        receipt_handle: Token for the current delivery, None when not in flight
        attributes: Queue-level message attributes (dead-letter metadata)
    """

    message_id: str
    event: Event
    delivery_count: int
    first_enqueued_at: float
    visible_at: float
    state: MessageState
    receipt_handle: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)


class HandlerOutcome(str, Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class PermanentFailurePolicy(str, Enum):
    """What a queue worker does with a message its consumer rejected permanently.

    RETRY_UNTIL_DEAD_LETTER nacks the message so the retry budget runs out and
    the message lands in the dead-letter queue. ACK_AND_DROP acknowledges it
    immediately and the message is gone.
    """

    RETRY_UNTIL_DEAD_LETTER = "retry_until_dead_letter"
    ACK_AND_DROP = "ack_and_drop"


@dataclass(frozen=True)
class HandlerResult:
    """Explicit outcome of a consumer handling one event."""

    outcome: HandlerOutcome
    error: Exception | None = None
    error_category: ErrorCategory | None = None

    @classmethod
    def success(cls) -> "HandlerResult":
        return cls(HandlerOutcome.SUCCESS)

    @classmethod
    def transient(cls, error: Exception) -> "HandlerResult":
        return cls(HandlerOutcome.TRANSIENT_FAILURE, error, ErrorCategory.TRANSIENT)

    @classmethod
    def permanent(cls, error: Exception) -> "HandlerResult":
        return cls(HandlerOutcome.PERMANENT_FAILURE, error, ErrorCategory.PERMANENT)

    @property
    def ok(self) -> bool:
        return self.outcome is HandlerOutcome.SUCCESS

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


class ChangeType(str, Enum):
    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


@dataclass(frozen=True)
class ChangeRecord:
    """One committed catalog change, emitted to change-feed listeners.

    ``fields`` holds the record state after the change (before it, for REMOVE).
    """

    change_type: ChangeType
    key: str
    fields: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PublishReceipt:
    """Summary of one topic publish: how many subscriptions matched and failed."""

    event_id: str
    matched: int
    failed: int = 0
