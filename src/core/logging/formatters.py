"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Correlation
        "trace_id",
        "event_id",
        "event_kind",
        "duration_ms",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        # Topic fan-out
        "subscription",
        "delivery_mode",
        "filter",
        "attributes",
        "matched",
        "failed",
        # Queue state machine
        "queue",
        "dead_letter_queue",
        "dead_letter_message_id",
        "message_id",
        "receipt_handle",
        "delivery_count",
        "max_attempts",
        "batch_size",
        "visible",
        "in_flight",
        "reason",
        # Consumers
        "consumer",
        "outcome",
        "policy",
        "subject_key",
        "file_type",
        "metadata_type",
        "missing_fields",
        # Catalog store
        "key",
        "field",
        "change_type",
        "backend",
        # Notifications
        "notifier",
        "sender",
        "recipient",
        "subject",
        # Source adapter
        "records_processed",
        "records_dropped",
        "element",
        # Workers
        "worker",
        "worker_count",
        "messages_processed",
        "port",
        "path",
    ]

    # Type mapping for numeric fields so they are never serialized as strings
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "delivery_count": int,
        "max_attempts": int,
        "batch_size": int,
        "visible": int,
        "in_flight": int,
        "records_processed": int,
        "records_dropped": int,
        "worker_count": int,
        "messages_processed": int,
        "port": int,
    }

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Coerce numeric fields to their declared type.

        Returns None when conversion fails so that a bad value never turns a
        numeric column into a string column downstream.
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in ("stage", "worker_id", "trace_id"):
            if log_context.get(field):
                log_entry[field] = log_context[field]

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._ensure_type(field, value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single-line JSON object."""
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())
        log_entry.update(get_message_context())

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Explicit extras win over ambient message context
        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context.get("stage"):
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, log_context: dict[str, Any]) -> list[str]:
        message_context = get_message_context()
        trace_id = getattr(record, "trace_id", None) or log_context.get("trace_id")
        message_id = getattr(record, "message_id", None) or message_context.get("message_id")
        delivery_count = getattr(record, "delivery_count", None)
        if delivery_count is None:
            delivery_count = message_context.get("delivery_count")

        tags = []
        if trace_id:
            tags.append(f"[{trace_id[:8]}]")
        if message_id:
            tags.append(f"[msg:{message_id[:8]}]")
        if delivery_count is not None:
            tags.append(f"[try:{delivery_count}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output with optional color coding."""
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record, log_context)

        message = record.getMessage()
        if record.exc_info and record.levelno >= logging.ERROR:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if tags:
            return f"{prefix} - {' '.join(tags)} {message}"

        return f"{prefix} - {message}"
