import pytest
from pydantic import ValidationError

from core.errors.exceptions import StoreError, UnsupportedFileTypeError
from core.types import ErrorCategory
from upload_pipeline.common.types import (
    Event,
    EventKind,
    HandlerOutcome,
    HandlerResult,
    PublishReceipt,
)


class TestEvent:
    def test_minimal(self):
        event = Event(id="e1", kind=EventKind.UPLOAD_CREATED)
        assert event.subject_key == ""
        assert event.attributes == {}
        assert event.payload == {}

    def test_kind_from_string(self):
        assert Event(id="e1", kind="METADATA_SET").kind is EventKind.METADATA_SET

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            Event(id="", kind=EventKind.UPLOAD_CREATED)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            Event(id="e1", kind="UPLOAD_RENAMED")

    def test_frozen(self):
        event = Event(id="e1", kind=EventKind.UPLOAD_CREATED)
        with pytest.raises(ValidationError):
            event.subject_key = "other.png"

    def test_mappings_are_read_only(self):
        event = Event(
            id="e1",
            kind=EventKind.UPLOAD_CREATED,
            attributes={"event_kind": "UPLOAD_CREATED"},
            payload={"key": "photo.png"},
        )
        with pytest.raises(TypeError):
            event.attributes["event_kind"] = "UPLOAD_REMOVED"
        with pytest.raises(TypeError):
            event.payload["key"] = "other.png"
        with pytest.raises(TypeError):
            del event.payload["key"]
        assert event.attributes == {"event_kind": "UPLOAD_CREATED"}
        assert event.payload == {"key": "photo.png"}

    def test_default_mappings_are_read_only(self):
        event = Event(id="e1", kind=EventKind.UPLOAD_CREATED)
        with pytest.raises(TypeError):
            event.attributes["event_kind"] = "UPLOAD_REMOVED"

    def test_model_dump_returns_plain_dicts(self):
        event = Event(id="e1", kind=EventKind.UPLOAD_CREATED, payload={"key": "photo.png"})
        dumped = event.model_dump(mode="json")
        assert dumped["payload"] == {"key": "photo.png"}
        assert type(dumped["payload"]) is dict

    def test_attributes_copied_from_caller(self):
        attributes = {"event_kind": "UPLOAD_CREATED"}
        event = Event(id="e1", kind=EventKind.UPLOAD_CREATED, attributes=attributes)
        attributes["event_kind"] = "UPLOAD_REMOVED"
        assert event.attributes["event_kind"] == "UPLOAD_CREATED"

    def test_log_fields(self):
        event = Event(id="e1", kind=EventKind.UPLOAD_REMOVED, subject_key="photo.png")
        assert event.log_fields() == {
            "event_id": "e1",
            "event_kind": "UPLOAD_REMOVED",
            "subject_key": "photo.png",
        }

    def test_log_fields_without_subject(self):
        assert Event(id="e1", kind=EventKind.METADATA_SET).log_fields()["subject_key"] is None


class TestHandlerResult:
    def test_success(self):
        result = HandlerResult.success()
        assert result.ok
        assert result.outcome is HandlerOutcome.SUCCESS
        assert result.error_message is None

    def test_transient(self):
        result = HandlerResult.transient(StoreError("down"))
        assert not result.ok
        assert result.outcome is HandlerOutcome.TRANSIENT_FAILURE
        assert result.error_category is ErrorCategory.TRANSIENT
        assert result.error_message == "down"

    def test_permanent(self):
        result = HandlerResult.permanent(UnsupportedFileTypeError("doc.pdf", "pdf"))
        assert result.outcome is HandlerOutcome.PERMANENT_FAILURE
        assert result.error_category is ErrorCategory.PERMANENT
        assert result.error_message == "Unsupported file type: pdf"


def test_publish_receipt_defaults():
    assert PublishReceipt(event_id="e1", matched=2).failed == 0
