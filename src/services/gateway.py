"""Connection gateway: the single handle to the external WhatsApp account.

The gateway translates the transport's raw events (QR issued,
authenticated, ready, message, ack, disconnected, ...) into the internal
GatewayEvent vocabulary and exposes send/download/logout. Exactly one
gateway instance is live at a time; the SessionLifecycleManager creates
and owns it, nothing else touches it directly.

BridgeGateway is the production implementation: a thin httpx client for
a WhatsApp-Web bridge sidecar that runs the browser session. The bridge
pushes raw events to the API webhook, which hands them to
``handle_transport_event``.

Example:
    gateway = BridgeGateway(config.bridge)
    await gateway.start(listener)
    message_id = await gateway.send_text("15551234567@c.us", "Hi!")
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx

from src.config import BridgeConfig
from src.errors import GatewayConnectionError, SendError
from src.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

BROADCAST_CHANNEL = "status@broadcast"
CONTACT_DOMAIN = "c.us"


def normalize_destination(destination: str) -> str:
    """Convert a contact id or phone number to the transport address form.

    Values that already carry a domain (``...@c.us``, ``...@g.us``) are
    returned unchanged; bare numbers get the ``@c.us`` suffix.

    Args:
        destination: Phone number, contact id, or full address.

    Returns:
        Transport address, e.g. ``15551234567@c.us``.
    """
    destination = destination.strip()
    if "@" in destination:
        return destination
    digits = destination.lstrip("+")
    return f"{digits}@{CONTACT_DOMAIN}"


def contact_id_from_address(address: str) -> str:
    """Strip the transport domain to get the external contact id.

    Example:
        contact_id_from_address("15551234567@c.us") -> "15551234567"
    """
    return address.split("@", 1)[0]


def is_broadcast(address: str | None) -> bool:
    """Return True for the status/broadcast channel, which is not a chat."""
    return address == BROADCAST_CHANNEL


class GatewayEventType(str, Enum):
    """Internal event vocabulary emitted by every gateway implementation."""

    code_issued = "code_issued"
    loading = "loading"
    authenticated = "authenticated"
    auth_failure = "auth_failure"
    ready = "ready"
    message_received = "message_received"
    message_ack = "message_ack"
    call_received = "call_received"
    state_changed = "state_changed"
    disconnected = "disconnected"
    error = "error"


@dataclass(frozen=True)
class ClientIdentity:
    """Metadata of the linked WhatsApp account."""

    wid: str | None = None
    pushname: str | None = None
    platform: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"wid": self.wid, "pushname": self.pushname, "platform": self.platform}


@dataclass(frozen=True)
class InboundMessage:
    """A message received from the transport, before routing."""

    sender: str
    body: str | None = None
    message_id: str | None = None
    has_media: bool = False
    push_name: str | None = None
    from_me: bool = False
    timestamp: int | None = None


@dataclass(frozen=True)
class MediaPayload:
    """Downloaded media attached to an inbound message."""

    mimetype: str
    data: str | None = None
    filename: str | None = None


@dataclass(frozen=True)
class GatewayEvent:
    """One translated transport event."""

    type: GatewayEventType
    payload: dict[str, Any] = field(default_factory=dict)
    message: InboundMessage | None = None


GatewayListener = Callable[[GatewayEvent], Awaitable[None]]


class Gateway(Protocol):
    """Narrow event + send interface around the external connection."""

    async def start(self, listener: GatewayListener) -> None:
        """Create the connection and begin the handshake.

        Raises:
            GatewayConnectionError: If the transport cannot be created.
        """
        ...

    async def handle_transport_event(self, raw: dict[str, Any]) -> None:
        """Accept a raw event pushed by the transport and emit it."""
        ...

    async def send_text(self, destination: str, content: str) -> str | None:
        """Send a text message; returns the transport message id if known.

        Raises:
            SendError: If the transport rejects the message.
        """
        ...

    async def download_media(self, message_id: str) -> MediaPayload | None:
        """Fetch media attached to a received message."""
        ...

    async def get_identity(self) -> ClientIdentity | None:
        """Return the linked account's identity, if available."""
        ...

    async def logout(self) -> None:
        """Unlink the account on the transport side."""
        ...

    async def close(self) -> None:
        """Release the underlying connection handle."""
        ...


GatewayFactory = Callable[[], Gateway]


def _parse_identity(data: dict[str, Any]) -> ClientIdentity | None:
    """Build a ClientIdentity from bridge data, None if it carries nothing."""
    wid = data.get("wid")
    if isinstance(wid, dict):
        wid = wid.get("user")
    identity = ClientIdentity(
        wid=wid,
        pushname=data.get("pushname"),
        platform=data.get("platform"),
    )
    if identity == ClientIdentity():
        return None
    return identity


def translate_bridge_event(raw: dict[str, Any]) -> GatewayEvent | None:
    """Translate a raw bridge webhook payload into a GatewayEvent.

    Bridge payloads look like ``{"event": "qr", "session": "default",
    "data": {"qr": "..."}}``. Unknown event names return None.

    Args:
        raw: Decoded JSON body posted by the bridge.

    Returns:
        The translated event, or None if the event is not recognised.
    """
    name = raw.get("event")
    data = raw.get("data") or {}
    if not isinstance(data, dict):
        data = {"value": data}

    if name == "qr":
        return GatewayEvent(GatewayEventType.code_issued, {"qr": data.get("qr")})
    if name == "loading_screen":
        return GatewayEvent(
            GatewayEventType.loading,
            {"percent": data.get("percent"), "message": data.get("message")},
        )
    if name == "authenticated":
        return GatewayEvent(GatewayEventType.authenticated)
    if name == "auth_failure":
        return GatewayEvent(
            GatewayEventType.auth_failure, {"message": data.get("message")}
        )
    if name == "ready":
        return GatewayEvent(
            GatewayEventType.ready, {"identity": _parse_identity(data)}
        )
    if name == "message":
        sender = data.get("from")
        if not sender:
            logger.warning("Bridge message event without sender, ignoring")
            return None
        message = InboundMessage(
            sender=sender,
            body=data.get("body"),
            message_id=data.get("id"),
            has_media=bool(data.get("hasMedia", False)),
            push_name=data.get("notifyName"),
            from_me=bool(data.get("fromMe", False)),
            timestamp=data.get("timestamp"),
        )
        return GatewayEvent(GatewayEventType.message_received, message=message)
    if name == "message_ack":
        return GatewayEvent(
            GatewayEventType.message_ack,
            {"message_id": data.get("id"), "ack": data.get("ack")},
        )
    if name == "call":
        return GatewayEvent(
            GatewayEventType.call_received,
            {"from": data.get("from"), "is_video": bool(data.get("isVideo"))},
        )
    if name == "change_state":
        return GatewayEvent(
            GatewayEventType.state_changed, {"state": data.get("state")}
        )
    if name == "disconnected":
        return GatewayEvent(
            GatewayEventType.disconnected, {"reason": data.get("reason")}
        )
    if name == "error":
        return GatewayEvent(GatewayEventType.error, {"message": data.get("message")})

    logger.debug("Ignoring unknown bridge event %r", name)
    return None


class BridgeGateway:
    """Gateway backed by a WhatsApp-Web bridge sidecar over HTTP.

    One instance wraps one bridge session. The httpx client is created
    on start() unless one is injected (tests pass an httpx.MockTransport).

    Attributes:
        session_name: Bridge session this gateway drives.
    """

    def __init__(
        self,
        config: BridgeConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize without touching the network.

        Args:
            config: Bridge connection settings.
            client: Optional pre-built httpx client.
        """
        self._config = config
        self.session_name = config.session_name
        self._client = client
        self._owns_client = client is None
        self._listener: GatewayListener | None = None

    def _build_client(self) -> httpx.AsyncClient:
        headers = {}
        if self._config.api_key:
            headers["X-Api-Key"] = self._config.api_key
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.request_timeout_seconds,
            headers=headers,
        )

    def _path(self, suffix: str) -> str:
        return f"/sessions/{self.session_name}{suffix}"

    async def start(self, listener: GatewayListener) -> None:
        """Ask the bridge to start (or resume) the browser session.

        Raises:
            GatewayConnectionError: If the bridge is unreachable or refuses.
        """
        self._listener = listener
        if self._client is None:
            self._client = self._build_client()
        try:
            resp = await self._client.post(self._path("/start"))
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise GatewayConnectionError(
                f"bridge start failed for session '{self.session_name}': {e}"
            ) from e
        logger.info("Bridge session '%s' start requested", self.session_name)

    async def handle_transport_event(self, raw: dict[str, Any]) -> None:
        """Translate a bridge webhook payload and forward it to the listener.

        Events addressed to a different bridge session are ignored.
        """
        session = raw.get("session")
        if session is not None and session != self.session_name:
            logger.debug(
                "Ignoring event for bridge session %r (this gateway: %r)",
                session,
                self.session_name,
            )
            return
        logger.debug("Bridge event: %s", redact_for_logging(raw))
        event = translate_bridge_event(raw)
        if event is None or self._listener is None:
            return
        await self._listener(event)

    async def send_text(self, destination: str, content: str) -> str | None:
        """Send a text message through the bridge.

        Raises:
            SendError: On transport failure or a non-2xx bridge response.
        """
        if self._client is None:
            raise SendError(destination, "bridge session not started")
        try:
            resp = await self._client.post(
                self._path("/messages"),
                json={"chatId": destination, "text": content},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SendError(
                destination, f"bridge returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise SendError(destination, str(e)) from e
        try:
            body = resp.json()
        except ValueError:
            return None
        return body.get("id") if isinstance(body, dict) else None

    async def download_media(self, message_id: str) -> MediaPayload | None:
        """Fetch media for a received message. None when the bridge has none."""
        if self._client is None:
            return None
        resp = await self._client.get(self._path(f"/messages/{message_id}/media"))
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        body = resp.json()
        mimetype = body.get("mimetype")
        if not mimetype:
            return None
        return MediaPayload(
            mimetype=mimetype,
            data=body.get("data"),
            filename=body.get("filename"),
        )

    async def get_identity(self) -> ClientIdentity | None:
        """Return the linked account identity from the bridge."""
        if self._client is None:
            return None
        resp = await self._client.get(self._path("/me"))
        resp.raise_for_status()
        return _parse_identity(resp.json())

    async def logout(self) -> None:
        """Unlink the device on the WhatsApp side."""
        if self._client is None:
            return
        resp = await self._client.post(self._path("/logout"))
        resp.raise_for_status()
        logger.info("Bridge session '%s' logged out", self.session_name)

    async def close(self) -> None:
        """Stop the bridge session and close the HTTP client. Idempotent."""
        self._listener = None
        if self._client is None:
            return
        try:
            await self._client.post(self._path("/stop"))
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to stop bridge session '%s': %s", self.session_name, e
            )
        finally:
            if self._owns_client:
                await self._client.aclose()
            self._client = None
