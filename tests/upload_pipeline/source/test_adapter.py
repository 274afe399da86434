"""Tests for decoding raw notifications into events."""

import json

import pytest

from upload_pipeline.common.types import EventKind
from upload_pipeline.source.adapter import (
    EventSourceAdapter,
    metadata_event,
    storage_event,
)

from tests.upload_pipeline.helpers import sample_value


def _s3_record(key, event_name="ObjectCreated:Put", bucket="photos", sequencer="0055AED6DCD90281E5"):
    return {
        "eventVersion": "2.1",
        "eventSource": "aws:s3",
        "eventTime": "2026-10-18T12:00:00.000Z",
        "eventName": event_name,
        "s3": {
            "bucket": {"name": bucket},
            "object": {"key": key, "size": 1024, "eTag": "abc", "sequencer": sequencer},
        },
    }


def _sns_envelope(message, message_id="sns-1", attributes=None):
    envelope = {
        "Type": "Notification",
        "MessageId": message_id,
        "TopicArn": "arn:aws:sns:us-east-1:123456789012:uploads",
        "Message": message if isinstance(message, str) else json.dumps(message),
    }
    if attributes:
        envelope["MessageAttributes"] = {
            name: {"Type": "String", "Value": value} for name, value in attributes.items()
        }
    return envelope


def _sqs_batch(*bodies):
    return {"Records": [{"messageId": f"m{i}", "body": json.dumps(b)} for i, b in enumerate(bodies)]}


@pytest.fixture
def adapter():
    return EventSourceAdapter()


class TestStorageNotifications:
    def test_direct_s3_notification(self, adapter):
        result = adapter.decode_batch({"Records": [_s3_record("photo.png")]})

        assert result.dropped == []
        [event] = result.events
        assert event.kind is EventKind.UPLOAD_CREATED
        assert event.subject_key == "photo.png"
        assert event.attributes == {
            "event_kind": "UPLOAD_CREATED",
            "bucket": "photos",
            "event_name": "ObjectCreated:Put",
        }
        assert event.payload["key"] == "photo.png"
        assert event.payload["size"] == "1024"
        assert event.payload["event_time"] == "2026-10-18T12:00:00.000Z"

    def test_removed_object(self, adapter):
        result = adapter.decode_batch({"Records": [_s3_record("photo.png", "ObjectRemoved:Delete")]})
        assert result.events[0].kind is EventKind.UPLOAD_REMOVED

    def test_sqs_sns_s3_nesting(self, adapter):
        raw = _sqs_batch(
            _sns_envelope({"Records": [_s3_record("a.png")]}),
            _sns_envelope({"Records": [_s3_record("b.jpeg"), _s3_record("c.pdf")]}),
        )
        result = adapter.decode_batch(json.dumps(raw))
        assert [e.subject_key for e in result.events] == ["a.png", "b.jpeg", "c.pdf"]

    def test_lambda_sns_records(self, adapter):
        raw = {"Records": [{"EventSource": "aws:sns", "Sns": _sns_envelope({"Records": [_s3_record("a.png")]})}]}
        assert [e.subject_key for e in adapter.decode_batch(raw).events] == ["a.png"]

    def test_bytes_input(self, adapter):
        raw = json.dumps({"Records": [_s3_record("photo.png")]}).encode()
        assert len(adapter.decode_batch(raw).events) == 1

    def test_list_input(self, adapter):
        raw = [{"Records": [_s3_record("a.png")]}, {"Records": [_s3_record("b.png")]}]
        assert len(adapter.decode_batch(raw).events) == 2

    def test_key_is_url_decoded(self, adapter):
        result = adapter.decode_batch({"Records": [_s3_record("summer+trip/beach%281%29.png")]})
        assert result.events[0].subject_key == "summer trip/beach(1).png"

    def test_event_id_is_deterministic(self, adapter):
        raw = {"Records": [_s3_record("photo.png")]}
        first = adapter.decode_batch(raw).events[0]
        second = adapter.decode_batch(json.dumps(raw)).events[0]
        assert first.id == second.id
        assert len(first.id) == 32

    def test_event_id_differs_per_write(self, adapter):
        a = adapter.decode_batch({"Records": [_s3_record("photo.png", sequencer="01")]}).events[0]
        b = adapter.decode_batch({"Records": [_s3_record("photo.png", sequencer="02")]}).events[0]
        assert a.id != b.id


class TestMetadataNotifications:
    def test_sns_metadata_message(self, adapter):
        raw = _sns_envelope(
            {"id": "photo.png", "value": "Sunset"},
            message_id="sns-42",
            attributes={"metadata_type": "Caption"},
        )
        [event] = adapter.decode_batch(raw).events

        assert event.id == "sns-42"
        assert event.kind is EventKind.METADATA_SET
        assert event.subject_key == "photo.png"
        assert event.attributes == {"metadata_type": "Caption", "event_kind": "METADATA_SET"}
        assert event.payload == {"id": "photo.png", "value": "Sunset"}

    def test_string_value_attribute_form(self, adapter):
        raw = _sns_envelope({"id": "photo.png", "value": "2026-10-18"})
        raw["MessageAttributes"] = {"metadata_type": {"DataType": "String", "StringValue": "Date"}}
        [event] = adapter.decode_batch(raw).events
        assert event.attributes["metadata_type"] == "Date"

    def test_metadata_through_sqs(self, adapter):
        raw = _sqs_batch(
            _sns_envelope({"id": "photo.png", "value": "Ana"}, attributes={"metadata_type": "Photographer"})
        )
        [event] = adapter.decode_batch(raw).events
        assert event.payload["value"] == "Ana"

    def test_non_string_payload_values_are_json_encoded(self, adapter):
        raw = _sns_envelope({"id": "photo.png", "value": 2026}, attributes={"metadata_type": "Date"})
        assert adapter.decode_batch(raw).events[0].payload["value"] == "2026"

    def test_missing_value_still_decoded(self, adapter):
        raw = _sns_envelope({"id": "photo.png"}, attributes={"metadata_type": "Caption"})
        [event] = adapter.decode_batch(raw).events
        assert "value" not in event.payload

    def test_without_metadata_type_dropped(self, adapter):
        result = adapter.decode_batch(_sns_envelope({"id": "photo.png", "value": "x"}))
        assert result.events == []
        assert result.dropped[0].reason == "unrecognized_message"


class TestMalformedInput:
    def test_invalid_json(self, adapter):
        before = sample_value("upload_pipeline_source_dropped_total", {"reason": "invalid_json"})
        result = adapter.decode_batch("{not json")
        assert result.events == []
        assert result.dropped[0].reason == "invalid_json"
        assert result.dropped[0].path == "$"
        assert sample_value("upload_pipeline_source_dropped_total", {"reason": "invalid_json"}) == before + 1

    def test_bad_element_does_not_sink_batch(self, adapter):
        raw = {
            "Records": [
                {"body": "{broken"},
                {"body": json.dumps(_sns_envelope({"Records": [_s3_record("good.png")]}))},
                "not a record",
            ]
        }
        result = adapter.decode_batch(raw)
        assert [e.subject_key for e in result.events] == ["good.png"]
        assert [(d.path, d.reason) for d in result.dropped] == [
            ("$.Records[0].body", "invalid_json"),
            ("$.Records[2]", "malformed_record"),
        ]

    def test_s3_test_event(self, adapter):
        raw = {"Service": "Amazon S3", "Event": "s3:TestEvent", "Bucket": "photos"}
        result = adapter.decode_batch(raw)
        assert result.events == []
        assert result.dropped[0].reason == "unsupported_event"

    def test_unsupported_s3_event_name(self, adapter):
        result = adapter.decode_batch({"Records": [_s3_record("a.png", "ObjectRestore:Post")]})
        assert result.dropped[0].reason == "unsupported_event"

    def test_missing_object_key(self, adapter):
        record = _s3_record("a.png")
        del record["s3"]["object"]["key"]
        result = adapter.decode_batch({"Records": [record]})
        assert result.dropped[0].reason == "missing_fields"

    def test_empty_object_key(self, adapter):
        result = adapter.decode_batch({"Records": [_s3_record("")]})
        assert result.dropped[0].reason == "missing_fields"

    def test_records_not_a_list(self, adapter):
        result = adapter.decode_batch({"Records": "nope"})
        assert result.dropped[0].reason == "malformed_record"

    def test_unrecognized_shapes(self, adapter):
        result = adapter.decode_batch([{"hello": "world"}, 42])
        assert [d.reason for d in result.dropped] == ["unrecognized_payload", "unrecognized_payload"]

    def test_deeply_nested_body_does_not_sink_batch(self, adapter):
        deep = "[" * 200_000 + "]" * 200_000
        raw = {"Records": [{"body": deep}, _s3_record("good.png")]}

        result = adapter.decode_batch(raw)

        assert [e.subject_key for e in result.events] == ["good.png"]
        assert [(d.path, d.reason) for d in result.dropped] == [("$.Records[0].body", "invalid_json")]

    def test_excessive_nesting_dropped(self, adapter):
        nested = [_s3_record("buried.png")]
        for _ in range(100):
            nested = [nested]
        result = adapter.decode_batch([nested, {"Records": [_s3_record("good.png")]}])

        assert [e.subject_key for e in result.events] == ["good.png"]
        assert [d.reason for d in result.dropped] == ["too_deep"]

    def test_drops_are_logged(self, adapter, caplog):
        adapter.decode_batch("{not json")
        assert "Dropped source element" in caplog.text


class TestEventBuilders:
    def test_storage_event(self):
        event = storage_event("photo.png")
        assert event.kind is EventKind.UPLOAD_CREATED
        assert event.attributes["event_kind"] == "UPLOAD_CREATED"
        assert storage_event("photo.png").id == event.id

    def test_storage_event_removed(self):
        event = storage_event("photo.png", EventKind.UPLOAD_REMOVED)
        assert event.attributes["event_name"] == "ObjectRemoved:Delete"

    def test_metadata_event(self):
        event = metadata_event("Caption", "photo.png", "Sunset")
        assert event.attributes["metadata_type"] == "Caption"
        assert event.payload == {"id": "photo.png", "value": "Sunset"}
        assert metadata_event("Caption", "photo.png", "Sunset", message_id="m1").id == "m1"
