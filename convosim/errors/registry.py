"""Error code registry with E-XXXX format codes.

This module defines the error code system for ConvoSim, organizing errors
into categories:
- E-1xxx: Input data errors
- E-3xxx: Conversational agent errors
- E-4xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    DATA = "data"  # E-1xxx: Input data errors
    AGENT = "agent"  # E-3xxx: Conversational agent errors
    SYSTEM = "system"  # E-4xxx: System/internal errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Input data errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.DATA,
        title="Malformed CSV",
        message_template="Could not parse CSV input: {details}",
        remediation="Check that every row has the same number of columns as the header and that quotes are balanced.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.DATA,
        title="Empty Input",
        message_template="CSV contains no usable conversation rows.",
        remediation="Add at least one row with an utterance column (user_input, input, query or message) or a multi-column turn layout.",
    ),
    # Conversational agent errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.AGENT,
        title="Turn Execution Failed",
        message_template="Agent call failed: {details}",
        remediation="Check the agent configuration and credentials, then rerun the simulation.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.AGENT,
        title="Turn Timed Out",
        message_template="Timed out after {seconds}s",
        remediation="Increase execution.timeout_ms or check agent latency.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.AGENT,
        title="Dialogflow API Error",
        message_template="Failed to detect intent: {details}",
        remediation="Verify project, location, agent id and access token.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Conversation Task Crashed",
        message_template="Conversation '{conversation_id}' aborted: {details}",
        remediation="Inspect the server log for the traceback. Other conversations are unaffected.",
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.SYSTEM,
        title="Invalid State Transition",
        message_template="Cannot transition from '{current}' to '{attempted}'. Allowed transitions: {allowed}",
        remediation="This indicates a bug in job lifecycle handling. Contact support.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
