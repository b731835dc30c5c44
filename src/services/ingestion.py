"""Message ingestion pipeline: inbound transport message to stored message.

For each inbound message: skip the broadcast channel and our own echoes,
route to a conversation, fetch media metadata, persist as an unread user
message, refresh the conversation's last-message cache, notify
subscribers, and (only under automated control) ask the responder for a
reply and dispatch it as the bot.

Failures are contained per message: a persistence failure drops that one
event (logged), a media or responder failure degrades to "no media" or
"no reply". Nothing raised here reaches the gateway's event delivery.
"""

import asyncio
import logging

from src.db.models import BOT_SENDER_ID, ChatMessage, Conversation, SenderType
from src.errors import DomainError, PersistenceError
from src.services.conversation_router import ConversationRouter
from src.services.conversation_store import ConversationStore
from src.services.dispatcher import OutboundDispatcher
from src.services.events import SessionEvent, SessionEventHub
from src.services.gateway import InboundMessage, contact_id_from_address, is_broadcast
from src.services.responders import AutomatedResponder
from src.services.session_lifecycle import SessionLifecycleManager
from src.utils.redaction import mask_contact

logger = logging.getLogger(__name__)


def _summary_for(content: str | None, media_type: str | None) -> str:
    if content:
        return content
    if media_type:
        return f"[{media_type}]"
    return "[media]"


def _message_payload(message: ChatMessage) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_type": message.sender_type,
        "sender_id": message.sender_id,
        "content": message.content,
        "media_type": message.media_type,
        "timestamp": message.timestamp,
        "is_read": message.is_read,
    }


def _conversation_payload(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "external_contact_id": conversation.external_contact_id,
        "display_name": conversation.display_name,
        "status": conversation.status,
        "is_automated_control": conversation.is_automated_control,
        "assigned_operator_id": conversation.assigned_operator_id,
    }


class MessageIngestionPipeline:
    """Turns inbound transport messages into stored conversation traffic."""

    def __init__(
        self,
        router: ConversationRouter,
        store: ConversationStore,
        session: SessionLifecycleManager,
        responder: AutomatedResponder,
        dispatcher: OutboundDispatcher,
        event_hub: SessionEventHub,
    ) -> None:
        self._router = router
        self._store = store
        self._session = session
        self._responder = responder
        self._dispatcher = dispatcher
        self._hub = event_hub

    async def handle_inbound(self, inbound: InboundMessage) -> ChatMessage | None:
        """Ingest one inbound message.

        Args:
            inbound: Message as delivered by the gateway.

        Returns:
            The persisted user message, or None if the message was skipped
            or could not be stored.
        """
        if is_broadcast(inbound.sender):
            logger.debug("Skipping broadcast channel message")
            return None
        if inbound.from_me:
            logger.debug("Skipping message sent from the linked account")
            return None

        contact_id = contact_id_from_address(inbound.sender)
        masked = mask_contact(contact_id)

        try:
            conversation = await self._router.get_or_create(
                contact_id, display_name=inbound.push_name
            )
        except PersistenceError as e:
            logger.error("Dropping inbound message from %s: %s", masked, e)
            return None

        media_type = None
        if inbound.has_media and inbound.message_id:
            try:
                media = await self._session.download_media(inbound.message_id)
            except Exception as e:
                logger.warning(
                    "Media download failed for message from %s: %s", masked, e
                )
                media = None
            if media is not None:
                media_type = media.mimetype

        try:
            message = await asyncio.to_thread(
                self._store.insert_message,
                conversation.id,
                SenderType.user,
                contact_id,
                inbound.body or None,
                media_type,
                False,
                inbound.message_id,
            )
        except PersistenceError as e:
            logger.error("Dropping inbound message from %s: %s", masked, e)
            return None

        logger.info(
            "Stored inbound message %s in conversation %s", message.id, conversation.id
        )

        try:
            await self._router.record_last_message(
                conversation.id,
                _summary_for(message.content, media_type),
                message.timestamp,
            )
        except PersistenceError as e:
            logger.warning(
                "Could not update last message for conversation %s: %s",
                conversation.id,
                e,
            )

        self._hub.publish(
            SessionEvent.message_received,
            {
                "message": _message_payload(message),
                "conversation": _conversation_payload(conversation),
            },
        )

        await self.maybe_respond(message, conversation, inbound.sender)
        return message

    async def maybe_respond(
        self,
        message: ChatMessage,
        conversation: Conversation,
        destination: str,
    ) -> ChatMessage | None:
        """Ask the responder for a reply and send it as the bot.

        Only user-authored messages in conversations under automated
        control get a reply, so bot and operator messages can never
        trigger the responder.

        Returns:
            The persisted bot reply, or None if no reply was sent.
        """
        if message.sender_type != SenderType.user.value:
            return None
        # Re-read control state; an operator may have taken over meanwhile.
        try:
            current = await asyncio.to_thread(
                self._store.get_conversation, conversation.id
            )
        except PersistenceError as e:
            logger.error(
                "Cannot read control state of conversation %s: %s",
                conversation.id,
                e,
            )
            return None
        if current is not None:
            conversation = current
        if not conversation.is_automated_control:
            logger.debug(
                "Conversation %s is under operator control, not responding",
                conversation.id,
            )
            return None

        try:
            reply = await self._responder.respond(message, conversation)
        except Exception as e:
            logger.error(
                "Responder failed for conversation %s: %s", conversation.id, e
            )
            return None
        if not reply:
            return None

        try:
            return await self._dispatcher.send(
                destination,
                reply,
                conversation.id,
                sender_type=SenderType.bot,
                sender_id=BOT_SENDER_ID,
            )
        except DomainError as e:
            logger.error(
                "Automated reply to conversation %s not sent: %s",
                conversation.id,
                e,
            )
            return None
