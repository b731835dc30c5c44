"""Error formatting utilities.

Turns typed domain exceptions into the JSON payload and HTTP status the
API layer returns, using the registry for titles and remediation text.
"""

from src.errors.domain import (
    DomainError,
    GatewayConnectionError,
    NotConnectedError,
    NotFoundError,
    NotInitializedError,
    PersistenceError,
    SendError,
)
from src.errors.registry import get_error

# Most specific class first; GatewayConnectionError subclasses share 503.
_STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (NotFoundError, 404),
    (NotInitializedError, 503),
    (NotConnectedError, 409),
    (SendError, 502),
    (GatewayConnectionError, 503),
    (PersistenceError, 503),
)


def http_status_for(error: DomainError) -> int:
    """Map a domain error to the HTTP status code the API returns.

    Args:
        error: The domain exception.

    Returns:
        HTTP status code (500 for unmapped errors).
    """
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def format_error(error: DomainError) -> dict[str, object]:
    """Build the API error payload for a domain exception.

    The registry template is rendered with the exception context; if a
    placeholder is missing the exception's own message is used instead.

    Args:
        error: The domain exception.

    Returns:
        Dict with error_code, title, message, remediation, is_retryable.
    """
    definition = get_error(error.code)
    if definition is None:
        return {
            "error_code": error.code,
            "title": "Unknown Error",
            "message": error.message,
            "remediation": "Contact support.",
            "is_retryable": False,
        }

    try:
        message = definition.message_template.format(**error.context)
    except (KeyError, IndexError):
        message = error.message

    return {
        "error_code": definition.code,
        "title": definition.title,
        "message": message,
        "remediation": definition.remediation,
        "is_retryable": definition.is_retryable,
    }


def format_error_text(error: DomainError, include_remediation: bool = True) -> str:
    """Format a domain error as a short multi-line string for logs or CLI.

    Args:
        error: The domain exception.
        include_remediation: Whether to include the remediation line.

    Returns:
        Formatted string.
    """
    payload = format_error(error)
    lines = [f"{payload['error_code']}: {payload['message']}"]
    if include_remediation:
        lines.append(f"  Action: {payload['remediation']}")
    return "\n".join(lines)
