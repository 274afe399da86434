"""
Unified exception hierarchy for the upload pipeline.

Provides typed exceptions with retry classification so consumers and
queue workers can decide between redelivery and dead-lettering.
"""


# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transient Errors
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class StoreError(TransientError):
    """Catalog store operation failed (unavailable, timeout, conflict)."""

    pass


class RecordNotFoundError(StoreError):
    """Update targeted a catalog key that does not exist (yet)."""

    def __init__(self, key: str, cause: Exception | None = None):
        super().__init__(f"Catalog record not found: {key}", cause, {"key": key})
        self.key = key


class SinkError(TransientError):
    """Notification sink failed to deliver a message."""

    pass


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ValidationError(PermanentError):
    """Message content failed consumer-side validation."""

    pass


class UnsupportedFileTypeError(ValidationError):
    """Uploaded object has an extension outside the accepted set."""

    def __init__(self, key: str, file_type: str | None):
        super().__init__(
            f"Unsupported file type: {file_type}",
            context={"key": key, "file_type": file_type},
        )
        self.key = key
        self.file_type = file_type


class MalformedMessageError(ValidationError):
    """Required message fields are missing or empty."""

    def __init__(self, message: str, missing_fields: list[str] | None = None):
        super().__init__(message, context={"missing_fields": missing_fields or []})
        self.missing_fields = missing_fields or []


class ConfigurationError(PermanentError):
    """Invalid pipeline configuration."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message, context={"errors": errors or []})
        self.errors = errors or []


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for non-PipelineError exceptions)
TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "429",
        "503",
        "502",
        "504",
        "timeout",
        "timed out",
        "connection",
        "throttl",
        "rate limit",
        "temporarily unavailable",
        "service unavailable",
        "provisionedthroughputexceeded",
    }
)

# Built-in exception types that signal bad input rather than a failing dependency
PERMANENT_EXCEPTION_TYPES = (ValueError, KeyError, TypeError, UnicodeDecodeError)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    # Builtin timeout/connection errors are subclasses of OSError
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "network unreachable",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or any(m in exc_str for m in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, PERMANENT_EXCEPTION_TYPES):
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Wrap a generic exception in appropriate PipelineError subclass."""
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    context = context or {}
    context.setdefault("error_type", type(exc).__name__)

    if category == ErrorCategory.TRANSIENT:
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
