"""Persistence boundary for conversations and chat messages.

Thin layer over SQLAlchemy models. Every method runs in its own short
transaction and translates SQLAlchemy failures into PersistenceError, so
the routing core never sees driver exceptions. Methods are synchronous;
async callers use ``await asyncio.to_thread(store.method, ...)``.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import (
    ChatMessage,
    Conversation,
    ConversationStatus,
    SenderType,
    utc_now_iso,
)
from src.errors import PersistenceError

logger = logging.getLogger(__name__)

# Columns update_conversation() may touch; everything else is owned elsewhere.
_UPDATABLE_FIELDS = frozenset({
    "display_name",
    "status",
    "is_automated_control",
    "assigned_operator_id",
    "last_message_summary",
    "last_message_at",
})


class ConversationStore:
    """CRUD operations for conversations and their messages.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
            (e.g. ``SessionLocal``).
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        # Returned rows are used after the session closes.
        db.expire_on_commit = False
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Conversation store operation failed: %s", e)
            raise PersistenceError(str(e)) from e
        finally:
            db.close()

    # -- conversations ----------------------------------------------------------

    def find_conversation_by_contact(
        self, external_contact_id: str
    ) -> Conversation | None:
        """Return the most recently created conversation for a contact."""
        with self._session() as db:
            return db.scalars(
                select(Conversation)
                .where(Conversation.external_contact_id == external_contact_id)
                .order_by(Conversation.created_at.desc())
                .limit(1)
            ).first()

    def insert_conversation(
        self,
        external_contact_id: str,
        display_name: str | None = None,
    ) -> Conversation:
        """Create a conversation under automated control."""
        conversation = Conversation(
            external_contact_id=external_contact_id,
            display_name=display_name,
            status=ConversationStatus.active.value,
            is_automated_control=True,
        )
        with self._session() as db:
            db.add(conversation)
        logger.info("Created conversation %s", conversation.id)
        return conversation

    def update_conversation(
        self, conversation_id: str, **fields: Any
    ) -> Conversation | None:
        """Apply field updates to a conversation.

        Args:
            conversation_id: Conversation to update.
            **fields: Column values; only display_name, status,
                is_automated_control, assigned_operator_id and the
                last-message cache columns are accepted.

        Returns:
            The updated conversation, or None if it does not exist.

        Raises:
            ValueError: If an unknown field is passed.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update conversation fields: {sorted(unknown)}")
        with self._session() as db:
            conversation = db.get(Conversation, conversation_id)
            if conversation is None:
                return None
            for name, value in fields.items():
                setattr(conversation, name, value)
            conversation.updated_at = utc_now_iso()
            db.flush()
            return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._session() as db:
            return db.get(Conversation, conversation_id)

    def list_conversations(
        self,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        """List conversations, most recent activity first.

        Args:
            status: Optional status filter.
            limit: Max rows.
            offset: Rows to skip.
        """
        query = select(Conversation)
        if status is not None:
            query = query.where(Conversation.status == status)
        query = (
            query.order_by(
                Conversation.last_message_at.desc().nullslast(),
                Conversation.created_at.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        with self._session() as db:
            return list(db.scalars(query).all())

    # -- messages ---------------------------------------------------------------

    def insert_message(
        self,
        conversation_id: str,
        sender_type: SenderType | str,
        sender_id: str,
        content: str | None,
        media_type: str | None = None,
        is_read: bool = False,
        external_message_id: str | None = None,
    ) -> ChatMessage:
        """Append a message to a conversation.

        Raises:
            PersistenceError: If the store rejects the insert (including an
                unknown conversation id under foreign-key enforcement).
        """
        message = ChatMessage(
            conversation_id=conversation_id,
            sender_type=SenderType(sender_type).value,
            sender_id=sender_id,
            content=content,
            media_type=media_type,
            is_read=is_read,
            external_message_id=external_message_id,
            timestamp=utc_now_iso(),
        )
        with self._session() as db:
            db.add(message)
        return message

    def list_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ChatMessage]:
        """Return a conversation's messages in timestamp order."""
        query = (
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.timestamp, ChatMessage.id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        with self._session() as db:
            return list(db.scalars(query).all())

    def mark_messages_read(self, conversation_id: str) -> int:
        """Mark a conversation's unread inbound messages as read.

        Returns:
            Number of messages updated.
        """
        with self._session() as db:
            result = db.execute(
                update(ChatMessage)
                .where(
                    ChatMessage.conversation_id == conversation_id,
                    ChatMessage.is_read == False,  # noqa: E712
                )
                .values(is_read=True)
            )
            return result.rowcount or 0
