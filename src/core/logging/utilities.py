"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)

ERROR_MESSAGE_MAX_LENGTH = 500


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (event_id, queue, delivery_count, ...)
                  Note: exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Catalog record written",
            event_id=event.id,
            key=event.subject_key,
        )
    """
    # Handle exc_info specially - it's a direct parameter to log(), not extra
    exc_info = kwargs.pop("exc_info", None)

    # Filter out reserved keys to prevent LogRecord conflicts
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from PipelineError subclasses and
    truncates long error messages.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields

    Example:
        try:
            await store.put(key, fields)
        except StoreError as e:
            log_exception(logger, e, "Catalog write failed", key=key)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    kwargs["error_message"] = truncate_error_message(exc)
    kwargs.setdefault("error_type", type(exc).__name__)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def truncate_error_message(error: Exception | str, max_length: int = ERROR_MESSAGE_MAX_LENGTH) -> str:
    """
    Truncate an error message so a single failure cannot flood the logs.

    Args:
        error: Exception or message to truncate
        max_length: Maximum length of the returned message

    Returns:
        Truncated error message with ellipsis if needed
    """
    error_message = str(error)
    if len(error_message) > max_length:
        return error_message[: max_length - 3] + "..."
    return error_message


def log_startup_banner(
    logger: logging.Logger,
    title: str,
    settings: dict[str, Any] | None = None,
) -> None:
    """
    Log startup banner with pipeline configuration.

    Args:
        logger: Logger instance
        title: Banner title (e.g., "Upload Event Pipeline")
        settings: Ordered name -> value pairs to print under the title
    """
    separator = "=" * 50

    lines = ["", separator, title, separator]
    for name, value in (settings or {}).items():
        lines.append(f"{name + ':':<24}{value}")
    lines.append(separator)

    logger.info("\n".join(lines))
