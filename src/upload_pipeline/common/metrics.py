"""
Prometheus metrics for upload pipeline monitoring.

Focused on the routing and retry path:
- Events published and topic deliveries per subscription
- Queue depth and dead-lettered messages per queue
- Consumer handler outcomes and durations
- Notification sends and dropped source elements

All metrics live in a dedicated registry so tests and embedded pipelines
never collide with the process-wide default registry.
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry()


# =============================================================================
# Topic
# =============================================================================

events_published_counter = Counter(
    "upload_pipeline_events_published_total",
    "Total events published to the topic",
    labelnames=["kind"],
    registry=REGISTRY,
)

topic_deliveries_counter = Counter(
    "upload_pipeline_topic_deliveries_total",
    "Total deliveries made by the topic to matching subscriptions",
    labelnames=["subscription", "mode"],
    registry=REGISTRY,
)

topic_delivery_errors_counter = Counter(
    "upload_pipeline_topic_delivery_errors_total",
    "Total topic deliveries that raised or returned a failure",
    labelnames=["subscription"],
    registry=REGISTRY,
)

# =============================================================================
# Durable queues
# =============================================================================

queue_depth_gauge = Gauge(
    "upload_pipeline_queue_depth",
    "Messages currently held by a durable queue",
    labelnames=["queue", "state"],
    registry=REGISTRY,
)

dead_lettered_counter = Counter(
    "upload_pipeline_dead_lettered_total",
    "Total messages moved to a dead-letter queue after exhausting retries",
    labelnames=["queue"],
    registry=REGISTRY,
)

dropped_messages_counter = Counter(
    "upload_pipeline_dropped_messages_total",
    "Total exhausted messages dropped because the queue has no dead-letter queue",
    labelnames=["queue"],
    registry=REGISTRY,
)

# =============================================================================
# Consumers
# =============================================================================

handler_outcomes_counter = Counter(
    "upload_pipeline_handler_outcomes_total",
    "Total consumer handler outcomes",
    labelnames=["consumer", "outcome"],
    registry=REGISTRY,
)

handler_duration_seconds = Histogram(
    "upload_pipeline_handler_duration_seconds",
    "Time spent in consumer handlers",
    labelnames=["consumer"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=REGISTRY,
)

notifications_counter = Counter(
    "upload_pipeline_notifications_total",
    "Total notifications attempted",
    labelnames=["notifier", "status"],
    registry=REGISTRY,
)

# =============================================================================
# Source adapter
# =============================================================================

source_dropped_counter = Counter(
    "upload_pipeline_source_dropped_total",
    "Total source elements dropped during decoding",
    labelnames=["reason"],
    registry=REGISTRY,
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_event_published(kind: str) -> None:
    events_published_counter.labels(kind=kind).inc()


def record_topic_delivery(subscription: str, mode: str, success: bool = True) -> None:
    """Record a topic delivery, counting it as an error when it failed."""
    topic_deliveries_counter.labels(subscription=subscription, mode=mode).inc()
    if not success:
        topic_delivery_errors_counter.labels(subscription=subscription).inc()


def update_queue_depth(queue: str, visible: int, in_flight: int) -> None:
    queue_depth_gauge.labels(queue=queue, state="visible").set(visible)
    queue_depth_gauge.labels(queue=queue, state="in_flight").set(in_flight)


def record_dead_lettered(queue: str) -> None:
    dead_lettered_counter.labels(queue=queue).inc()


def record_message_dropped(queue: str) -> None:
    dropped_messages_counter.labels(queue=queue).inc()


def record_handler_outcome(consumer: str, outcome: str, duration: float | None = None) -> None:
    handler_outcomes_counter.labels(consumer=consumer, outcome=outcome).inc()
    if duration is not None:
        handler_duration_seconds.labels(consumer=consumer).observe(duration)


def record_notification(notifier: str, success: bool) -> None:
    notifications_counter.labels(notifier=notifier, status="sent" if success else "failed").inc()


def record_source_dropped(reason: str) -> None:
    source_dropped_counter.labels(reason=reason).inc()


def start_metrics_server(port: int) -> None:
    """Expose the pipeline registry over HTTP on the given port."""
    start_http_server(port, registry=REGISTRY)
    logger.info("Metrics server started", extra={"port": port})


__all__ = [
    "REGISTRY",
    # Metrics
    "events_published_counter",
    "topic_deliveries_counter",
    "topic_delivery_errors_counter",
    "queue_depth_gauge",
    "dead_lettered_counter",
    "dropped_messages_counter",
    "handler_outcomes_counter",
    "handler_duration_seconds",
    "notifications_counter",
    "source_dropped_counter",
    # Helper functions
    "record_event_published",
    "record_topic_delivery",
    "update_queue_depth",
    "record_dead_lettered",
    "record_message_dropped",
    "record_handler_outcome",
    "record_notification",
    "record_source_dropped",
    "start_metrics_server",
]
