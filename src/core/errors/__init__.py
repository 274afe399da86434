"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    ConfigurationError,
    # Enums
    ErrorCategory,
    MalformedMessageError,
    PermanentError,
    # Base classes
    PipelineError,
    RecordNotFoundError,
    SinkError,
    StoreError,
    TransientError,
    UnsupportedFileTypeError,
    ValidationError,
    # Classification utilities
    classify_exception,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    # Transient errors
    "StoreError",
    "RecordNotFoundError",
    "SinkError",
    # Permanent errors
    "ValidationError",
    "UnsupportedFileTypeError",
    "MalformedMessageError",
    "ConfigurationError",
    # Classification utilities
    "classify_exception",
    "wrap_exception",
]
