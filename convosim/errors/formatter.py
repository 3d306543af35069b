"""Error formatting utilities.

This module provides:
- ConvoSimError exception class for application errors
- Error formatting for user display
- Sanitisation of error messages before they leave the process
"""

import re
from dataclasses import dataclass, field
from typing import Any

from convosim.errors.registry import get_error

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."

_SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"SQLITE",
        r"ECONNREFUSED",
        r"ENOTFOUND",
        r"password",
        r"credential",
        r"token",
        r"secret",
        r"api[_-]?key",
        r"stack trace",
        r"Traceback \(most recent call last\)",
    )
]


@dataclass
class ConvoSimError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str = ""
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        """Return the human-readable message."""
        return self.message

    @classmethod
    def from_code(cls, code: str, **kwargs: Any) -> "ConvoSimError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                The special key 'details' is stored on the error as well
                when it is a dict.

        Returns:
            ConvoSimError instance with formatted message.
        """
        return cls(code=code, **registry_fields(code, **kwargs))


def registry_fields(code: str, **kwargs: Any) -> dict[str, Any]:
    """Resolve message, remediation and retryability for a registry code.

    Missing placeholders leave the template untouched rather than failing.
    """
    error_def = get_error(code)
    if not error_def:
        return {
            "message": f"Unknown error: {code}",
            "remediation": "Contact support.",
            "is_retryable": False,
            "details": {},
        }

    message = error_def.message_template
    try:
        message = message.format(**kwargs)
    except KeyError:
        pass

    details = kwargs.get("details")
    return {
        "message": message,
        "remediation": error_def.remediation,
        "is_retryable": error_def.is_retryable,
        "details": details if isinstance(details, dict) else {},
    }


def format_error(error: ConvoSimError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The ConvoSimError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for user display.
    """
    lines = [f"{error.code}: {error.message}"]
    if include_remediation and error.remediation:
        lines.append(f"  Action: {error.remediation}")
    return "\n".join(lines)


def is_safe_error_message(message: str) -> bool:
    """Check that a message carries no credentials or implementation detail."""
    return not any(p.search(message) for p in _SENSITIVE_PATTERNS)


def sanitize_error_message(
    message: str | None, fallback: str = GENERIC_ERROR_MESSAGE
) -> str | None:
    """Return the message if it is safe to show, otherwise a generic fallback.

    None passes through unchanged so optional error fields stay optional.
    """
    if message is None:
        return None
    if is_safe_error_message(message):
        return message
    return fallback
