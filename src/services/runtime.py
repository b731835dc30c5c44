"""ChatRelay runtime: single owner of the process-scoped bridge core.

build_chat_relay() wires the lifecycle manager, event hub, store, router,
ingestion pipeline, takeover arbitrator and dispatcher exactly once. The
API lifespan stores the result on ``app.state.relay`` and routes receive
it through a dependency. Never build a second ChatRelay for the same
WhatsApp account in one process.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from src.config import ChatRelayConfig
from src.db.models import BOT_SENDER_ID, ChatMessage, Conversation, SenderType
from src.errors import NotFoundError
from src.services.conversation_router import ConversationRouter
from src.services.conversation_store import ConversationStore
from src.services.dispatcher import OutboundDispatcher
from src.services.events import SessionEventHub
from src.services.gateway import BridgeGateway, ClientIdentity, GatewayFactory
from src.services.ingestion import MessageIngestionPipeline
from src.services.responders import AutomatedResponder, build_responder
from src.services.session_lifecycle import SessionLifecycleManager, SessionState
from src.services.takeover import TakeoverArbitrator

logger = logging.getLogger(__name__)


class ChatRelay:
    """Facade over the bridge core.

    The six public operations are start, status, logout, send,
    assume_human_control and release_to_automation; subscribe/unsubscribe
    give access to the event stream.
    """

    def __init__(
        self,
        session: SessionLifecycleManager,
        event_hub: SessionEventHub,
        store: ConversationStore,
        router: ConversationRouter,
        pipeline: MessageIngestionPipeline,
        arbitrator: TakeoverArbitrator,
        dispatcher: OutboundDispatcher,
    ) -> None:
        self.session = session
        self.event_hub = event_hub
        self.store = store
        self.router = router
        self.pipeline = pipeline
        self.arbitrator = arbitrator
        self.dispatcher = dispatcher

    # -- session ----------------------------------------------------------------

    async def start(self) -> SessionState:
        return await self.session.start()

    def status(self) -> SessionState:
        return self.session.status()

    async def logout(self) -> SessionState:
        return await self.session.logout()

    async def identity(self) -> ClientIdentity:
        return await self.session.get_identity()

    async def handle_bridge_event(self, raw: dict[str, Any]) -> None:
        """Feed a raw bridge webhook payload to the live gateway."""
        await self.session.handle_transport_event(raw)

    # -- messaging & control ------------------------------------------------

    async def send(
        self,
        destination: str,
        content: str,
        conversation_id: str,
        sender_type: SenderType = SenderType.bot,
        sender_id: str = BOT_SENDER_ID,
    ) -> ChatMessage:
        return await self.dispatcher.send(
            destination, content, conversation_id, sender_type, sender_id
        )

    async def assume_human_control(
        self, conversation_id: str, operator_id: str
    ) -> Conversation:
        return await self.arbitrator.assume_human_control(conversation_id, operator_id)

    async def release_to_automation(self, conversation_id: str) -> Conversation:
        return await self.arbitrator.release_to_automation(conversation_id)

    # -- events -----------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        return self.event_hub.subscribe()

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self.event_hub.unsubscribe(queue)

    # -- dashboard reads ----------------------------------------------------

    async def list_conversations(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        return await asyncio.to_thread(
            self.store.list_conversations, status, limit, offset
        )

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Return a conversation or raise NotFoundError."""
        conversation = await asyncio.to_thread(
            self.store.get_conversation, conversation_id
        )
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    async def list_messages(
        self, conversation_id: str, limit: int | None = None, offset: int = 0
    ) -> list[ChatMessage]:
        await self.get_conversation(conversation_id)
        return await asyncio.to_thread(
            self.store.list_messages, conversation_id, limit, offset
        )

    async def mark_read(self, conversation_id: str) -> int:
        await self.get_conversation(conversation_id)
        return await asyncio.to_thread(self.store.mark_messages_read, conversation_id)

    async def shutdown(self) -> None:
        """Release the gateway on process exit. The account stays linked."""
        await self.session.shutdown()
        logger.info("ChatRelay shut down")


def build_chat_relay(
    config: ChatRelayConfig,
    session_factory: Callable[[], Session],
    gateway_factory: GatewayFactory | None = None,
    responder: AutomatedResponder | None = None,
) -> ChatRelay:
    """Assemble the bridge core. Has no side effects; nothing connects.

    Args:
        config: Loaded configuration.
        session_factory: SQLAlchemy session factory for the store.
        gateway_factory: Builds a fresh gateway per start(); defaults to
            a BridgeGateway for ``config.bridge``.
        responder: Automated responder; defaults to ``config.responder``.

    Returns:
        The wired ChatRelay.
    """
    if gateway_factory is None:
        def gateway_factory() -> BridgeGateway:
            return BridgeGateway(config.bridge)

    event_hub = SessionEventHub()
    session = SessionLifecycleManager(
        gateway_factory,
        event_hub,
        start_timeout=config.session.start_timeout_seconds,
    )
    store = ConversationStore(session_factory)
    router = ConversationRouter(store)
    dispatcher = OutboundDispatcher(
        session,
        store,
        router,
        start_timeout=config.session.send_start_timeout_seconds,
    )
    pipeline = MessageIngestionPipeline(
        router,
        store,
        session,
        responder or build_responder(config.responder),
        dispatcher,
        event_hub,
    )
    session.set_message_handler(pipeline.handle_inbound)
    arbitrator = TakeoverArbitrator(store)

    return ChatRelay(
        session=session,
        event_hub=event_hub,
        store=store,
        router=router,
        pipeline=pipeline,
        arbitrator=arbitrator,
        dispatcher=dispatcher,
    )
