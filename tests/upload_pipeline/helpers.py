"""Test helpers shared across upload pipeline tests."""

from upload_pipeline.common.metrics import REGISTRY
from upload_pipeline.common.types import Event, EventKind

RECIPIENT = "uploads@example.com"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sample_value(name: str, labels: dict[str, str]) -> float:
    """Current value of a pipeline metric sample (0 when never recorded)."""
    return REGISTRY.get_sample_value(name, labels) or 0.0


def make_event(
    key: str = "photo.png",
    kind: EventKind = EventKind.UPLOAD_CREATED,
    event_id: str | None = None,
    **attributes: str,
) -> Event:
    return Event(
        id=event_id or f"evt-{key}-{kind.value}",
        kind=kind,
        subject_key=key,
        attributes={"event_kind": kind.value, **attributes},
        payload={"key": key},
    )
