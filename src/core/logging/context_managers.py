"""Context managers for structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from core.logging.context import get_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Context manager for temporary log context.

    Usage:
        with LogContext(stage="uploads", worker_id=worker_id):
            # All logs in this block will have stage and worker_id
            do_work()
    """

    def __init__(
        self,
        stage: Optional[str] = None,
        worker_id: Optional[str] = None,
        trace_id: Optional[str] = None,
    ):
        self.new_context = {
            "stage": stage,
            "worker_id": worker_id,
            "trace_id": trace_id,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        for key, value in self.new_context.items():
            if value is not None:
                set_log_context(**{key: value})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(
            stage=self.old_context.get("stage", ""),
            worker_id=self.old_context.get("worker_id", ""),
            trace_id=self.old_context.get("trace_id", ""),
        )
        return False


@contextmanager
def log_phase(
    logger: logging.Logger,
    phase: str,
    level: int = logging.DEBUG,
    **context: Any,
):
    """
    Context manager for timing a phase of work.

    Logs the duration on success, or the exception with its duration on
    failure (the exception is re-raised).

    Example:
        with log_phase(logger, "drain_queues"):
            await pipeline.run_until_idle()
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000
        log_exception(
            logger,
            exc,
            f"Phase failed: {phase}",
            duration_ms=round(duration_ms, 2),
            **context,
        )
        raise
    duration_ms = (time.perf_counter() - start) * 1000
    log_with_context(
        logger,
        level,
        f"Phase complete: {phase}",
        duration_ms=round(duration_ms, 2),
        **context,
    )
