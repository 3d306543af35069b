"""Error handling framework for ConvoSim.

This package provides:
- Error code registry with E-XXXX format codes
- The ConvoSimError base exception
- Error formatting and sanitisation utilities

Error categories:
- E-1xxx: Input data errors
- E-3xxx: Conversational agent errors
- E-4xxx: System/internal errors
"""

from convosim.errors.formatter import (
    GENERIC_ERROR_MESSAGE,
    ConvoSimError,
    format_error,
    is_safe_error_message,
    registry_fields,
    sanitize_error_message,
)
from convosim.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "ConvoSimError",
    "GENERIC_ERROR_MESSAGE",
    "format_error",
    "is_safe_error_message",
    "registry_fields",
    "sanitize_error_message",
]
