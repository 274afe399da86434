"""Durable queues and the workers that drain them."""

from upload_pipeline.queue.durable_queue import (
    DEAD_LETTER_SOURCE_ATTR,
    FINAL_DELIVERY_COUNT_ATTR,
    LAST_ERROR_ATTR,
    DurableQueue,
    QueueDepth,
)
from upload_pipeline.queue.worker import QueueWorker, run_worker_pool

__all__ = [
    "DurableQueue",
    "QueueDepth",
    "QueueWorker",
    "run_worker_pool",
    "DEAD_LETTER_SOURCE_ATTR",
    "FINAL_DELIVERY_COUNT_ATTR",
    "LAST_ERROR_ATTR",
]
