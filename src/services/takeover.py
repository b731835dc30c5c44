"""Takeover arbitrator: flips reply ownership between bot and operator.

Both operations are idempotent single-row updates that set the control
flag and the operator id together, so is_automated_control=True always
comes with assigned_operator_id=None.
"""

import asyncio
import logging

from src.db.models import Conversation, ConversationStatus
from src.errors import NotFoundError
from src.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class TakeoverArbitrator:
    """Switches a conversation between automated and human control."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    async def assume_human_control(
        self, conversation_id: str, operator_id: str
    ) -> Conversation:
        """Hand the conversation to an operator and reopen it.

        Raises:
            NotFoundError: If the conversation does not exist.
        """
        conversation = await asyncio.to_thread(
            self._store.update_conversation,
            conversation_id,
            is_automated_control=False,
            assigned_operator_id=operator_id,
            status=ConversationStatus.active.value,
        )
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        logger.info(
            "Operator %s took over conversation %s", operator_id, conversation_id
        )
        return conversation

    async def release_to_automation(self, conversation_id: str) -> Conversation:
        """Return the conversation to the automated responder.

        Raises:
            NotFoundError: If the conversation does not exist.
        """
        conversation = await asyncio.to_thread(
            self._store.update_conversation,
            conversation_id,
            is_automated_control=True,
            assigned_operator_id=None,
        )
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        logger.info("Conversation %s released to automation", conversation_id)
        return conversation
