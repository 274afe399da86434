"""
Structured logging module.

Provides JSON logging with worker/message context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.context_managers import LogContext, log_phase
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.message_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
    set_message_context,
)
from core.logging.setup import get_log_file_path, get_logger, setup_logging
from core.logging.utilities import (
    log_exception,
    log_startup_banner,
    log_with_context,
    truncate_error_message,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Message Context
    "set_message_context",
    "get_message_context",
    "clear_message_context",
    "MessageLogContext",
    # Context Managers
    "LogContext",
    "log_phase",
    # Utilities
    "log_with_context",
    "log_exception",
    "log_startup_banner",
    "truncate_error_message",
]
