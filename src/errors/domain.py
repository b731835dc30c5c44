"""Typed domain exceptions for the session and routing core.

Each exception carries the registry code it maps to, so the API layer
can render a consistent payload (see ``src.errors.formatter``) and the
dashboard can tell "reconnect required" apart from "message rejected".

Usage:
    # In service layer
    raise NotFoundError("Conversation", conversation_id)

    # In route handler (normally done by the app-wide exception handler)
    try:
        conversation = arbitrator.release_to_automation(conversation_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors.

    Attributes:
        code: Registry code in E-XXXX format.
        context: Values substituted into the registry message template.
    """

    code = "E-4001"

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class GatewayConnectionError(DomainError):
    """The transport could not be created or the handshake failed.

    Non-fatal: the caller may retry ``start()``.
    """

    code = "E-1001"

    def __init__(self, details: str) -> None:
        super().__init__(f"Connection failed: {details}", details=details)


class SessionStartTimeoutError(GatewayConnectionError):
    """The handshake did not reach a stable state within the bounded wait."""

    code = "E-1002"

    def __init__(self, timeout: float) -> None:
        DomainError.__init__(
            self,
            f"Session start timed out after {timeout:g}s",
            timeout=f"{timeout:g}",
        )
        self.timeout = timeout


class AuthenticationFailedError(GatewayConnectionError):
    """The external account refused the session credentials."""

    code = "E-1003"


class NotInitializedError(DomainError):
    """Send attempted with no live session and the lazy reconnect failed."""

    code = "E-2001"

    def __init__(self, message: str = "WhatsApp client not initialized and auto-initialization failed") -> None:
        super().__init__(message)


class NotConnectedError(DomainError):
    """Identity queried (or similar) while the session is not connected."""

    code = "E-2002"

    def __init__(self, status: str) -> None:
        super().__init__(f"WhatsApp session is {status}, not connected", status=status)
        self.status = status


class SendError(DomainError):
    """The transport rejected a send. Reported, never retried here."""

    code = "E-3001"

    def __init__(self, destination: str, details: str) -> None:
        super().__init__(
            f"Failed to send message to {destination}: {details}",
            destination=destination,
            details=details,
        )
        self.destination = destination


class PersistenceError(DomainError):
    """The conversation store is unreachable or rejected a write."""

    code = "E-4001"

    def __init__(self, details: str) -> None:
        super().__init__(f"Persistence failed: {details}", details=details)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    code = "E-5001"

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(
            f"{resource_type} '{identifier}' not found",
            resource_type=resource_type,
            identifier=identifier,
        )
        self.resource_type = resource_type
        self.identifier = identifier
