"""
Core types used across modules.

This module provides the base enums that are shared
across the core library and the upload pipeline.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    The queue workers use this to decide between redelivery and the
    consumer's permanent-failure policy.

    Categories:
        TRANSIENT: Temporary failures that may succeed on redelivery
                   (e.g., store unavailable, timeouts)
        PERMANENT: Failures that will repeat identically on every attempt
                   (e.g., unsupported file type, malformed message)
        UNKNOWN: Unclassified errors, treated as transient
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
