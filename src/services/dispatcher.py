"""Outbound dispatcher: send through the session, then persist.

send() makes exactly one lazy start() attempt when the session is not
connected and waits (bounded) for it to connect. A failed transport send
never produces a persisted message.
"""

import asyncio
import logging

from src.db.models import BOT_SENDER_ID, ChatMessage, SenderType
from src.errors import (
    GatewayConnectionError,
    NotFoundError,
    NotInitializedError,
    PersistenceError,
)
from src.services.conversation_router import ConversationRouter
from src.services.conversation_store import ConversationStore
from src.services.gateway import normalize_destination
from src.services.session_lifecycle import ConnectionStatus, SessionLifecycleManager
from src.utils.redaction import mask_contact

logger = logging.getLogger(__name__)


class OutboundDispatcher:
    """Sends bot and operator messages through the live session.

    Args:
        session: Lifecycle manager owning the gateway.
        store: Persistence boundary.
        router: Router used for the last-message cache.
        start_timeout: How long the lazy reconnect may wait for connected.
    """

    def __init__(
        self,
        session: SessionLifecycleManager,
        store: ConversationStore,
        router: ConversationRouter,
        start_timeout: float = 30.0,
    ) -> None:
        self._session = session
        self._store = store
        self._router = router
        self._start_timeout = start_timeout

    async def _ensure_connected(self) -> None:
        """Make one start() attempt if not connected.

        Raises:
            NotInitializedError: If the session does not reach connected.
        """
        if self._session.status().connection_status is ConnectionStatus.connected:
            return

        logger.info("WhatsApp client not connected, attempting to initialize...")
        try:
            await self._session.start()
        except GatewayConnectionError as e:
            logger.error("Lazy session start failed: %s", e)
            raise NotInitializedError() from e

        if not await self._session.wait_until_connected(self._start_timeout):
            logger.warning(
                "Session is %s after lazy start, refusing to send",
                self._session.status().connection_status.value,
            )
            raise NotInitializedError()

    async def send(
        self,
        destination: str,
        content: str,
        conversation_id: str,
        sender_type: SenderType = SenderType.bot,
        sender_id: str = BOT_SENDER_ID,
    ) -> ChatMessage:
        """Send a message and persist it on success.

        Args:
            destination: Phone number, contact id, or transport address.
            content: Message text.
            conversation_id: Conversation the message belongs to.
            sender_type: bot or admin.
            sender_id: "bot" or the operator id.

        Returns:
            The persisted ChatMessage (is_read=True).

        Raises:
            ValueError: If sender_type is user.
            NotFoundError: If the conversation does not exist.
            NotInitializedError: If no session could be brought up.
            SendError: If the transport rejects the message.
            PersistenceError: If the sent message could not be stored.
        """
        sender_type = SenderType(sender_type)
        if sender_type is SenderType.user:
            raise ValueError("Outbound messages must be sent as bot or admin")

        conversation = await asyncio.to_thread(
            self._store.get_conversation, conversation_id
        )
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)

        await self._ensure_connected()

        address = normalize_destination(destination)
        external_id = await self._session.send_text(address, content)
        logger.info(
            "Sent %s message to %s in conversation %s",
            sender_type.value,
            mask_contact(address),
            conversation_id,
        )

        message = await asyncio.to_thread(
            self._store.insert_message,
            conversation_id,
            sender_type,
            sender_id,
            content,
            None,
            True,
            external_id,
        )
        # Cache update failures never fail a delivered send.
        try:
            await self._router.record_last_message(
                conversation_id, content, message.timestamp
            )
        except PersistenceError as e:
            logger.warning(
                "Could not update last message for conversation %s: %s",
                conversation_id,
                e,
            )
        return message
