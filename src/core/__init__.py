"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    logging     - Structured JSON logging with worker/message context
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization helpers and worker id generation
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
