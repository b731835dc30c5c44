"""Conversation router: external contact id to durable conversation.

get_or_create() is race-safe within the process: lookups and inserts for
the same contact run inside a per-contact asyncio.Lock, so rapid-fire
first messages from a new contact attach to one conversation.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from src.db.models import Conversation
from src.services.conversation_store import ConversationStore
from src.utils.redaction import mask_contact

logger = logging.getLogger(__name__)


class ConversationRouter:
    """Maps external contact ids to conversations.

    Args:
        store: Persistence boundary.
    """

    def __init__(self, store: ConversationStore) -> None:
        self._store = store
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _contact_lock(self, contact_id: str) -> AsyncGenerator[None, None]:
        """Single-writer section per contact; locks are dropped when idle."""
        lock = self._locks.setdefault(contact_id, asyncio.Lock())
        self._lock_users[contact_id] = self._lock_users.get(contact_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[contact_id] -= 1
            if self._lock_users[contact_id] == 0:
                del self._lock_users[contact_id]
                del self._locks[contact_id]

    async def get_or_create(
        self,
        external_contact_id: str,
        display_name: str | None = None,
    ) -> Conversation:
        """Return the contact's most recent conversation, creating one if absent.

        A newly created conversation is active and under automated control.
        An existing conversation without a display name picks up the one
        supplied here.

        Raises:
            PersistenceError: If the store is unreachable.
        """
        async with self._contact_lock(external_contact_id):
            conversation = await asyncio.to_thread(
                self._store.find_conversation_by_contact, external_contact_id
            )
            if conversation is None:
                conversation = await asyncio.to_thread(
                    self._store.insert_conversation,
                    external_contact_id,
                    display_name,
                )
                logger.info(
                    "New conversation %s for contact %s",
                    conversation.id,
                    mask_contact(external_contact_id),
                )
                return conversation

            if display_name and not conversation.display_name:
                updated = await asyncio.to_thread(
                    self._store.update_conversation,
                    conversation.id,
                    display_name=display_name,
                )
                if updated is not None:
                    conversation = updated
            return conversation

    async def record_last_message(
        self, conversation_id: str, summary: str, at: str
    ) -> None:
        """Update the conversation's denormalized last-message cache.

        Raises:
            PersistenceError: If the store is unreachable.
        """
        updated = await asyncio.to_thread(
            self._store.update_conversation,
            conversation_id,
            last_message_summary=summary,
            last_message_at=at,
        )
        if updated is None:
            logger.warning(
                "Last-message update for unknown conversation %s", conversation_id
            )
