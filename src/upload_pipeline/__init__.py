"""
Upload event pipeline.

Ingests file-upload notifications, fans them out to filtered subscriptions,
buffers queued deliveries with bounded retries and dead-letters messages
that keep failing.

Architecture:
    Source Adapter -> Topic -> Durable Queues -> Queue Workers -> Consumers
                                   |
                                   +-> Dead-letter queues

Components:
    source      - Decodes storage and metadata notifications into Events
    topic       - Attribute filters and the fan-out bus
    queue       - Durable queue with visibility deadlines and the poll worker
    stores      - Catalog store (with change feed) and notification sinks
    consumers   - Logger, metadata updater, notifiers and removal handler
    app         - Wires everything together from configuration
"""

__version__ = "0.1.0"
