"""
upload_pipeline-specific logging utilities.

Provides pipeline-specific helpers built on top of core.logging:
- extract_log_context: identifiers from events, messages and results
- log_handler_result: one consistent log line per consumer outcome

For core logging functions, import directly from core.logging:
    from core.logging import get_logger, log_with_context, log_exception
"""

import logging
from typing import Any, Dict

from core.logging import log_exception, log_with_context
from upload_pipeline.common.types import (
    Event,
    HandlerOutcome,
    HandlerResult,
    QueuedMessage,
)

__all__ = [
    "extract_log_context",
    "log_handler_result",
]


def extract_log_context(obj: Any) -> Dict[str, Any]:
    """
    Extract loggable identifiers from a pipeline object.

    Args:
        obj: Event, QueuedMessage or HandlerResult

    Returns:
        Dict with identifier fields (None values omitted)
    """
    ctx: Dict[str, Any] = {}

    if isinstance(obj, QueuedMessage):
        ctx["message_id"] = obj.message_id
        ctx["delivery_count"] = obj.delivery_count
        ctx.update(extract_log_context(obj.event))
    elif isinstance(obj, Event):
        ctx.update(obj.log_fields())
    elif isinstance(obj, HandlerResult):
        ctx["outcome"] = obj.outcome.value
        if obj.error is not None:
            ctx["error"] = str(obj.error)
            ctx["error_type"] = type(obj.error).__name__
        if obj.error_category is not None:
            ctx["error_category"] = obj.error_category.value

    return {k: v for k, v in ctx.items() if v is not None}


def log_handler_result(
    logger: logging.Logger,
    consumer: str,
    event: Event,
    result: HandlerResult,
    **kwargs: Any,
) -> None:
    """Log a consumer outcome at a level matching its severity."""
    fields = {"consumer": consumer, **extract_log_context(event), **kwargs}

    if result.outcome is HandlerOutcome.SUCCESS:
        log_with_context(logger, logging.DEBUG, "Event handled", outcome=result.outcome.value, **fields)
        return

    level = logging.WARNING
    message = (
        "Transient failure handling event"
        if result.outcome is HandlerOutcome.TRANSIENT_FAILURE
        else "Permanent failure handling event"
    )
    if result.error is not None:
        log_exception(
            logger,
            result.error,
            message,
            level=level,
            include_traceback=False,
            outcome=result.outcome.value,
            **fields,
        )
    else:
        log_with_context(logger, level, message, outcome=result.outcome.value, **fields)
