"""Session lifecycle manager: the state machine around the gateway.

States: disconnected → initializing → qr_ready → connected, and back to
disconnected on logout, transport disconnect, auth failure, or a failed
or timed-out start. The manager is the only owner of the gateway handle
and the only writer of SessionState; everyone else reads snapshots.

Invariants:
- At most one live gateway per manager (start() is idempotent while a
  gateway exists and serialized by an asyncio.Lock).
- pending_qr_code is only set in qr_ready; client_identity only in
  connected. SessionState is a frozen dataclass replaced wholesale, so
  readers never observe a partial transition.
- Events from a gateway that was torn down are ignored (each gateway is
  tagged with a generation number).

Example:
    manager = SessionLifecycleManager(gateway_factory, hub)
    state = await manager.start()
    if state.connection_status is ConnectionStatus.qr_ready:
        show(state.pending_qr_code)
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from src.errors import (
    AuthenticationFailedError,
    GatewayConnectionError,
    NotConnectedError,
    NotInitializedError,
    SessionStartTimeoutError,
)
from src.services.events import SessionEvent, SessionEventHub
from src.services.gateway import (
    ClientIdentity,
    Gateway,
    GatewayEvent,
    GatewayEventType,
    GatewayFactory,
    InboundMessage,
    MediaPayload,
)
from src.utils.redaction import mask_contact

logger = logging.getLogger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[Any]]


class ConnectionStatus(str, Enum):
    """Connection states of the WhatsApp session."""

    disconnected = "disconnected"
    initializing = "initializing"
    qr_ready = "qr_ready"
    connected = "connected"


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of the session.

    Attributes:
        connection_status: Current state.
        pending_qr_code: QR challenge, only present in qr_ready.
        client_identity: Linked account, only present in connected.
        last_error: Message of the most recent failure, for the dashboard.
    """

    connection_status: ConnectionStatus = ConnectionStatus.disconnected
    pending_qr_code: str | None = None
    client_identity: ClientIdentity | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.connection_status.value,
            "qr_code": self.pending_qr_code,
            "client_info": self.client_identity.to_dict()
            if self.client_identity
            else None,
            "last_error": self.last_error,
        }


class SessionLifecycleManager:
    """Owns the single gateway handle and drives the session state machine.

    Construction has no side effects; nothing connects until start().
    """

    def __init__(
        self,
        gateway_factory: GatewayFactory,
        event_hub: SessionEventHub,
        start_timeout: float = 60.0,
    ) -> None:
        """Initialize in the disconnected state.

        Args:
            gateway_factory: Builds a fresh, unstarted gateway.
            event_hub: Hub that receives boundary events.
            start_timeout: Upper bound on how long start() waits for the
                handshake to leave the initializing state.
        """
        self._gateway_factory = gateway_factory
        self._hub = event_hub
        self._start_timeout = start_timeout
        self._gateway: Gateway | None = None
        self._generation = 0
        self._state = SessionState()
        self._start_lock = asyncio.Lock()
        self._changed = asyncio.Event()
        self._message_handler: MessageHandler | None = None
        # (generation, error) of the most recent authentication failure.
        self._auth_failure: tuple[int, AuthenticationFailedError] | None = None

    # -- state ----------------------------------------------------------------

    def status(self) -> SessionState:
        """Return the current state snapshot. Never blocks."""
        return self._state

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        """Register the consumer of inbound messages (the ingestion pipeline)."""
        self._message_handler = handler

    def _set_state(self, state: SessionState) -> None:
        previous = self._state
        self._state = state
        if previous.connection_status is not state.connection_status:
            logger.info(
                "Session state %s -> %s",
                previous.connection_status.value,
                state.connection_status.value,
            )
        # Wake every waiter, then arm a fresh event for the next change.
        changed = self._changed
        self._changed = asyncio.Event()
        changed.set()

    async def _wait_for(
        self,
        predicate: Callable[[SessionState], bool],
        timeout: float,
    ) -> bool:
        async def _wait() -> None:
            while not predicate(self._state):
                await self._changed.wait()

        try:
            await asyncio.wait_for(_wait(), timeout)
        except asyncio.TimeoutError:
            return predicate(self._state)
        return True

    # -- lifecycle --------------------------------------------------------------

    async def start(self) -> SessionState:
        """Start the session if it is disconnected.

        No-op returning the current snapshot when a gateway already exists
        (initializing, qr_ready, or connected). Otherwise creates one
        gateway, begins the handshake, and waits (bounded) until the
        state leaves initializing.

        Returns:
            Snapshot after the first transition out of initializing.

        Raises:
            GatewayConnectionError: If the transport cannot be created.
            SessionStartTimeoutError: If the handshake does not progress
                within start_timeout; the session is torn down.
            AuthenticationFailedError: If the account rejected the session
                before it left initializing.
        """
        async with self._start_lock:
            if self._state.connection_status is not ConnectionStatus.disconnected:
                logger.debug(
                    "start() ignored, session already %s",
                    self._state.connection_status.value,
                )
                return self._state

            self._generation += 1
            generation = self._generation
            self._set_state(SessionState(connection_status=ConnectionStatus.initializing))

            try:
                gateway = self._gateway_factory()
                self._gateway = gateway
                await gateway.start(
                    functools.partial(self._on_gateway_event, generation)
                )
            except Exception as e:
                logger.error("WhatsApp session start failed: %s", e)
                if generation == self._generation:
                    await self._teardown(last_error=str(e))
                    self._hub.publish(SessionEvent.error, {"message": str(e)})
                if isinstance(e, GatewayConnectionError):
                    raise
                raise GatewayConnectionError(str(e)) from e

        reached = await self._wait_for(
            lambda s: s.connection_status is not ConnectionStatus.initializing,
            self._start_timeout,
        )
        if not reached and generation == self._generation:
            error = SessionStartTimeoutError(self._start_timeout)
            logger.error("%s", error)
            await self._teardown(last_error=str(error))
            self._hub.publish(SessionEvent.error, {"message": str(error)})
            raise error
        if self._auth_failure is not None and self._auth_failure[0] == generation:
            raise self._auth_failure[1]
        return self._state

    async def wait_until_connected(self, timeout: float) -> bool:
        """Wait until connected; give up on disconnect or timeout.

        Returns:
            True if the session is connected when the wait ends.
        """
        await self._wait_for(
            lambda s: s.connection_status
            in (ConnectionStatus.connected, ConnectionStatus.disconnected),
            timeout,
        )
        return self._state.connection_status is ConnectionStatus.connected

    async def logout(self) -> SessionState:
        """Tear the session down and return to disconnected.

        From connected the account is unlinked on the transport side.
        From initializing or qr_ready the pending handshake is cancelled.
        From disconnected this is a no-op.
        """
        status = self._state.connection_status
        if status is ConnectionStatus.disconnected:
            return self._state

        gateway = self._gateway
        if status is ConnectionStatus.connected and gateway is not None:
            try:
                await gateway.logout()
            except Exception as e:
                logger.warning("Gateway logout failed, closing anyway: %s", e)
        await self._teardown()
        self._hub.publish(SessionEvent.disconnected, {"reason": "logout"})
        return self._state

    async def shutdown(self) -> None:
        """Release the gateway without unlinking the account (process exit)."""
        if self._gateway is not None:
            await self._teardown()

    async def _teardown(self, last_error: str | None = None) -> None:
        """Drop the current gateway and move to disconnected."""
        gateway = self._gateway
        self._gateway = None
        self._generation += 1
        self._set_state(SessionState(last_error=last_error))
        if gateway is not None:
            try:
                await gateway.close()
            except Exception as e:
                logger.warning("Error closing gateway: %s", e)

    # -- identity & gateway access ------------------------------------------

    async def get_identity(self) -> ClientIdentity:
        """Return the linked account identity.

        Raises:
            NotConnectedError: Unless the session is connected.
        """
        state = self._state
        if state.connection_status is not ConnectionStatus.connected:
            raise NotConnectedError(state.connection_status.value)
        if state.client_identity is not None:
            return state.client_identity

        identity = None
        if self._gateway is not None:
            try:
                identity = await self._gateway.get_identity()
            except Exception as e:
                logger.warning("Could not fetch client identity: %s", e)
        identity = identity or ClientIdentity()
        if self._state.connection_status is ConnectionStatus.connected:
            self._set_state(replace(self._state, client_identity=identity))
        return identity

    async def send_text(self, destination: str, content: str) -> str | None:
        """Send through the live gateway.

        Raises:
            NotInitializedError: If there is no connected gateway.
            SendError: If the transport rejects the message.
        """
        gateway = self._gateway
        if gateway is None or self._state.connection_status is not ConnectionStatus.connected:
            raise NotInitializedError()
        return await gateway.send_text(destination, content)

    async def download_media(self, message_id: str) -> MediaPayload | None:
        """Fetch media through the live gateway; None without a gateway."""
        if self._gateway is None:
            return None
        return await self._gateway.download_media(message_id)

    async def handle_transport_event(self, raw: dict[str, Any]) -> None:
        """Route a raw transport event to the live gateway, if any."""
        gateway = self._gateway
        if gateway is None:
            logger.debug("Transport event %r with no live gateway, ignoring", raw.get("event"))
            return
        await gateway.handle_transport_event(raw)

    # -- gateway events ---------------------------------------------------------

    async def _on_gateway_event(self, generation: int, event: GatewayEvent) -> None:
        """Apply one gateway event to the state machine."""
        if generation != self._generation:
            logger.debug("Ignoring %s from a stale gateway", event.type.value)
            return

        status = self._state.connection_status

        if event.type is GatewayEventType.code_issued:
            qr = event.payload.get("qr")
            if not qr:
                logger.warning("QR event without a code, ignoring")
                return
            if status in (ConnectionStatus.initializing, ConnectionStatus.qr_ready):
                self._set_state(
                    SessionState(
                        connection_status=ConnectionStatus.qr_ready,
                        pending_qr_code=qr,
                    )
                )
                self._hub.publish(SessionEvent.qr_ready, {"qr_code": qr})
            else:
                logger.debug("QR event while %s, ignoring", status.value)

        elif event.type in (GatewayEventType.authenticated, GatewayEventType.ready):
            identity = event.payload.get("identity") or self._state.client_identity
            self._set_state(
                SessionState(
                    connection_status=ConnectionStatus.connected,
                    client_identity=identity,
                )
            )
            if status is not ConnectionStatus.connected:
                self._hub.publish(
                    SessionEvent.connected,
                    {"client_info": identity.to_dict() if identity else None},
                )

        elif event.type is GatewayEventType.auth_failure:
            message = event.payload.get("message") or "authentication failed"
            error = AuthenticationFailedError(message)
            logger.error("WhatsApp authentication failure: %s", message)
            self._auth_failure = (generation, error)
            await self._teardown(last_error=str(error))
            self._hub.publish(
                SessionEvent.auth_failure,
                {"message": message, "error_code": error.code},
            )

        elif event.type is GatewayEventType.disconnected:
            reason = event.payload.get("reason")
            logger.warning("WhatsApp client disconnected: %s", reason)
            await self._teardown()
            self._hub.publish(SessionEvent.disconnected, {"reason": reason})

        elif event.type is GatewayEventType.message_received:
            if event.message is None:
                return
            if self._message_handler is None:
                logger.warning("Inbound message with no handler registered, dropping")
                return
            await self._message_handler(event.message)

        elif event.type is GatewayEventType.error:
            message = event.payload.get("message")
            logger.error("Gateway error: %s", message)
            self._set_state(replace(self._state, last_error=message))
            self._hub.publish(SessionEvent.error, {"message": message})

        elif event.type is GatewayEventType.loading:
            logger.info(
                "Loading screen %s%% %s",
                event.payload.get("percent"),
                event.payload.get("message") or "",
            )

        elif event.type is GatewayEventType.message_ack:
            logger.debug(
                "Message %s ack=%s",
                event.payload.get("message_id"),
                event.payload.get("ack"),
            )

        elif event.type is GatewayEventType.call_received:
            logger.debug(
                "Ignoring incoming call from %s (video=%s)",
                mask_contact(event.payload.get("from")),
                event.payload.get("is_video"),
            )

        elif event.type is GatewayEventType.state_changed:
            logger.info("Transport state changed: %s", event.payload.get("state"))
