"""Error code registry with E-XXXX format codes.

This module defines the error code system for ChatRelay, organizing errors
into categories:
- E-1xxx: Connection errors (bridge transport, handshake)
- E-2xxx: Session errors (no live session)
- E-3xxx: Send errors (transport rejected a message)
- E-4xxx: Persistence errors
- E-5xxx: Conversation errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    CONNECTION = "connection"  # E-1xxx
    SESSION = "session"  # E-2xxx
    SEND = "send"  # E-3xxx
    PERSISTENCE = "persistence"  # E-4xxx
    CONVERSATION = "conversation"  # E-5xxx


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
    # Connection errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.CONNECTION,
        title="Connection Failed",
        message_template="Could not open the WhatsApp connection: {details}",
        remediation="Check that the WhatsApp bridge is running and reachable, then connect again.",
        is_retryable=True,
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.CONNECTION,
        title="Session Start Timed Out",
        message_template="The WhatsApp session did not finish starting within {timeout} seconds.",
        remediation="Scan the QR code if one is shown, or retry the connection.",
        is_retryable=True,
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.CONNECTION,
        title="Authentication Failed",
        message_template="WhatsApp rejected the session authentication: {details}",
        remediation="Log out, then connect again and scan a fresh QR code.",
    ),
    # Session errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.SESSION,
        title="WhatsApp Not Initialized",
        message_template="No live WhatsApp session and the automatic reconnect did not succeed.",
        remediation="Please reconnect WhatsApp by clicking Connect and scanning the QR code.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.SESSION,
        title="WhatsApp Not Connected",
        message_template="The WhatsApp session is {status}, not connected.",
        remediation="Wait for the session to finish connecting, or connect it first.",
    ),
    # Send errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.SEND,
        title="Message Rejected",
        message_template="WhatsApp did not accept the message to {destination}: {details}",
        remediation="Check the recipient number and message, then send it again.",
    ),
    # Persistence errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.PERSISTENCE,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    # Conversation errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.CONVERSATION,
        title="Not Found",
        message_template="{resource_type} '{identifier}' not found.",
        remediation="Refresh the conversation list and pick an existing conversation.",
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
    """Get all error codes in a category.

    Args:
        category: The category to filter by.

    Returns:
        List of ErrorCode definitions in the category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
