"""Fan-out topic and subscription filters."""

from upload_pipeline.topic.bus import Subscription, Topic
from upload_pipeline.topic.filters import FilterConstraint, SubscriptionFilter, matches

__all__ = [
    "Topic",
    "Subscription",
    "SubscriptionFilter",
    "FilterConstraint",
    "matches",
]
