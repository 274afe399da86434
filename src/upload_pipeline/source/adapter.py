"""Event source adapter: storage and metadata notifications -> canonical Events.

Accepted input shapes, unwrapped recursively:

    SQS batch         {"Records": [{"body": "<json>"}, ...]}
    SNS envelope      {"Type": "Notification", "MessageId": ..., "Message": "<json>",
                       "MessageAttributes": {...}}
    SNS (Lambda form) {"Records": [{"Sns": {<SNS envelope>}}]}
    S3 notification   {"Records": [{"eventName": "ObjectCreated:Put",
                                    "s3": {"bucket": {...}, "object": {...}}}]}

S3 ObjectCreated:* becomes UPLOAD_CREATED and ObjectRemoved:* becomes
UPLOAD_REMOVED. An SNS message without Records but with a ``metadata_type``
message attribute becomes a METADATA_SET event.

A malformed element is dropped with a diagnostic. The rest of the batch is
still decoded.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote_plus

from core.logging.utilities import log_with_context
from upload_pipeline.common.metrics import record_source_dropped
from upload_pipeline.common.types import Event, EventKind

logger = logging.getLogger(__name__)

EVENT_KIND_ATTR = "event_kind"
METADATA_TYPE_ATTR = "metadata_type"

CREATED_PREFIX = "ObjectCreated"
REMOVED_PREFIX = "ObjectRemoved"

# Envelope layers (SQS, SNS, Records lists) never legitimately nest this deep
MAX_NESTING_DEPTH = 32


@dataclass(frozen=True)
class DroppedElement:
    """One input element the adapter could not turn into an event."""

    path: str
    reason: str
    detail: str = ""


@dataclass
class DecodeResult:
    events: list[Event] = field(default_factory=list)
    dropped: list[DroppedElement] = field(default_factory=list)


def _event_id(*parts: str) -> str:
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:32]


def _as_strings(data: dict[str, Any]) -> dict[str, str]:
    return {
        str(k): v if isinstance(v, str) else json.dumps(v)
        for k, v in data.items()
        if v is not None
    }


def storage_event(
    key: str,
    kind: EventKind = EventKind.UPLOAD_CREATED,
    bucket: str = "local",
    sequencer: str = "",
) -> Event:
    """Build the event a storage notification for ``key`` would decode to."""
    event_name = f"{CREATED_PREFIX}:Put" if kind is EventKind.UPLOAD_CREATED else f"{REMOVED_PREFIX}:Delete"
    return Event(
        id=_event_id(bucket, key, event_name, sequencer),
        kind=kind,
        subject_key=key,
        attributes={EVENT_KIND_ATTR: kind.value, "bucket": bucket, "event_name": event_name},
        payload={"key": key, "bucket": bucket, "event_name": event_name},
    )


def metadata_event(
    metadata_type: str,
    key: str,
    value: str,
    message_id: str | None = None,
) -> Event:
    """Build a METADATA_SET event as a direct metadata publication would."""
    payload = {"id": key, "value": value}
    return Event(
        id=message_id or _event_id(metadata_type, key, value),
        kind=EventKind.METADATA_SET,
        subject_key=key,
        attributes={METADATA_TYPE_ATTR: metadata_type, EVENT_KIND_ATTR: EventKind.METADATA_SET.value},
        payload=payload,
    )


class EventSourceAdapter:
    """Decodes raw notification payloads into Events."""

    def decode_batch(self, raw: str | bytes | dict | list) -> DecodeResult:
        """Decode every recognizable element of ``raw``.

        Never raises for bad input: problems are reported in ``dropped``.
        """
        result = DecodeResult()
        self._walk(raw, "$", result)

        for dropped in result.dropped:
            record_source_dropped(dropped.reason)
            log_with_context(
                logger,
                logging.WARNING,
                f"Dropped source element: {dropped.detail or dropped.reason}",
                element=dropped.path,
                reason=dropped.reason,
            )
        log_with_context(
            logger,
            logging.DEBUG,
            "Decoded source batch",
            records_processed=len(result.events),
            records_dropped=len(result.dropped),
        )
        return result

    # -------------------------------------------------------------------------
    # Recursive unwrapping
    # -------------------------------------------------------------------------

    def _walk(self, data: Any, path: str, result: DecodeResult, depth: int = 0) -> None:
        if depth > MAX_NESTING_DEPTH:
            result.dropped.append(
                DroppedElement(path, "too_deep", f"Nested deeper than {MAX_NESTING_DEPTH} levels")
            )
            return

        if isinstance(data, (str, bytes, bytearray)):
            parsed = self._parse_json(data, path, result)
            if parsed is not None:
                self._walk(parsed, path, result, depth + 1)
            return

        if isinstance(data, list):
            for index, item in enumerate(data):
                self._walk(item, f"{path}[{index}]", result, depth + 1)
            return

        if not isinstance(data, dict):
            result.dropped.append(
                DroppedElement(path, "unrecognized_payload", f"Unexpected {type(data).__name__}")
            )
            return

        if "Records" in data:
            self._walk_records(data["Records"], f"{path}.Records", result, depth + 1)
        elif self._is_sns_envelope(data):
            self._decode_sns(data, path, result, depth + 1)
        elif isinstance(data.get("Event"), str):
            result.dropped.append(
                DroppedElement(path, "unsupported_event", f"Unsupported event: {data['Event']}")
            )
        else:
            result.dropped.append(
                DroppedElement(path, "unrecognized_payload", "No Records, Message or S3 data")
            )

    def _walk_records(
        self, records: Any, path: str, result: DecodeResult, depth: int = 0
    ) -> None:
        if not isinstance(records, list):
            result.dropped.append(DroppedElement(path, "malformed_record", "Records is not a list"))
            return

        for index, record in enumerate(records):
            record_path = f"{path}[{index}]"
            if not isinstance(record, dict):
                result.dropped.append(
                    DroppedElement(record_path, "malformed_record", "Record is not an object")
                )
            elif "body" in record:
                self._walk(record["body"], f"{record_path}.body", result, depth + 1)
            elif "Sns" in record:
                self._walk(record["Sns"], f"{record_path}.Sns", result, depth + 1)
            elif "s3" in record or "eventName" in record:
                self._decode_s3_record(record, record_path, result)
            else:
                result.dropped.append(
                    DroppedElement(record_path, "malformed_record", "Unrecognized record shape")
                )

    @staticmethod
    def _parse_json(data: str | bytes | bytearray, path: str, result: DecodeResult) -> Any:
        try:
            return json.loads(data)
        except (ValueError, TypeError, RecursionError) as e:
            result.dropped.append(DroppedElement(path, "invalid_json", str(e)[:200]))
            return None

    # -------------------------------------------------------------------------
    # SNS envelopes
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_sns_envelope(data: dict[str, Any]) -> bool:
        if "Message" not in data:
            return False
        return data.get("Type") == "Notification" or "MessageId" in data or "TopicArn" in data

    @staticmethod
    def _message_attributes(raw: Any) -> dict[str, str]:
        attributes: dict[str, str] = {}
        if not isinstance(raw, dict):
            return attributes
        for name, entry in raw.items():
            if isinstance(entry, dict):
                value = entry.get("Value", entry.get("StringValue"))
            else:
                value = entry
            if value is not None:
                attributes[str(name)] = str(value)
        return attributes

    def _decode_sns(
        self, envelope: dict[str, Any], path: str, result: DecodeResult, depth: int = 0
    ) -> None:
        message_path = f"{path}.Message"
        message = envelope["Message"]
        if isinstance(message, (str, bytes, bytearray)):
            message = self._parse_json(message, message_path, result)
            if message is None:
                return

        if isinstance(message, dict) and "Records" in message:
            self._walk_records(message["Records"], f"{message_path}.Records", result, depth + 1)
            return

        attributes = self._message_attributes(envelope.get("MessageAttributes"))
        metadata_type = attributes.get(METADATA_TYPE_ATTR)
        if not metadata_type:
            result.dropped.append(
                DroppedElement(
                    message_path, "unrecognized_message", "SNS message has no Records or metadata_type"
                )
            )
            return

        if not isinstance(message, dict):
            result.dropped.append(
                DroppedElement(message_path, "malformed_record", "Metadata message is not an object")
            )
            return

        payload = _as_strings(message)
        message_id = str(envelope.get("MessageId") or "")
        attributes[EVENT_KIND_ATTR] = EventKind.METADATA_SET.value
        result.events.append(
            Event(
                id=message_id or _event_id(metadata_type, json.dumps(payload, sort_keys=True)),
                kind=EventKind.METADATA_SET,
                subject_key=payload.get("id", ""),
                attributes=attributes,
                payload=payload,
            )
        )

    # -------------------------------------------------------------------------
    # S3 records
    # -------------------------------------------------------------------------

    def _decode_s3_record(self, record: dict[str, Any], path: str, result: DecodeResult) -> None:
        event_name = str(record.get("eventName", ""))
        if event_name.startswith(CREATED_PREFIX):
            kind = EventKind.UPLOAD_CREATED
        elif event_name.startswith(REMOVED_PREFIX):
            kind = EventKind.UPLOAD_REMOVED
        else:
            result.dropped.append(
                DroppedElement(path, "unsupported_event", f"Unsupported S3 event: {event_name or '<none>'}")
            )
            return

        try:
            s3 = record["s3"]
            raw_key = s3["object"]["key"]
            bucket = str((s3.get("bucket") or {}).get("name", ""))
        except (KeyError, TypeError, AttributeError) as e:
            result.dropped.append(DroppedElement(path, "missing_fields", f"Missing S3 field: {e}"))
            return

        if not isinstance(raw_key, str) or not raw_key:
            result.dropped.append(DroppedElement(path, "missing_fields", "Empty S3 object key"))
            return

        key = unquote_plus(raw_key)
        s3_object = s3["object"]
        sequencer = str(s3_object.get("sequencer") or record.get("eventTime") or "")

        payload = _as_strings(
            {
                "key": key,
                "bucket": bucket,
                "event_name": event_name,
                "event_time": record.get("eventTime"),
                "size": s3_object.get("size"),
                "etag": s3_object.get("eTag"),
            }
        )
        result.events.append(
            Event(
                id=_event_id(bucket, key, event_name, sequencer),
                kind=kind,
                subject_key=key,
                attributes={EVENT_KIND_ATTR: kind.value, "bucket": bucket, "event_name": event_name},
                payload=payload,
            )
        )
