"""Error handling framework for ChatRelay.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions raised by the session and routing core
- Error formatting for API responses

Error categories:
- E-1xxx: Connection errors
- E-2xxx: Session errors
- E-3xxx: Send errors
- E-4xxx: Persistence errors
- E-5xxx: Conversation errors
"""

from src.errors.domain import (
    AuthenticationFailedError,
    DomainError,
    GatewayConnectionError,
    NotConnectedError,
    NotFoundError,
    NotInitializedError,
    PersistenceError,
    SendError,
    SessionStartTimeoutError,
)
from src.errors.formatter import format_error, format_error_text, http_status_for
from src.errors.registry import (
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
    # Domain exceptions
    "DomainError",
    "GatewayConnectionError",
    "SessionStartTimeoutError",
    "AuthenticationFailedError",
    "NotInitializedError",
    "NotConnectedError",
    "SendError",
    "PersistenceError",
    "NotFoundError",
    # Formatter
    "format_error",
    "format_error_text",
    "http_status_for",
]
