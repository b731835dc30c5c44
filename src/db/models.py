"""SQLAlchemy ORM models for the ChatRelay conversation store.

This module defines the conversation and message tables the bridge
persists inbound and outbound WhatsApp traffic into. Uses SQLAlchemy 2.0
style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the database schema constraints


class ConversationStatus(str, Enum):
    """Status values for a conversation.

    Closure is a status transition; conversations are never hard-deleted
    by the routing core.
    """

    active = "active"
    pending = "pending"
    closed = "closed"


class SenderType(str, Enum):
    """Who authored a chat message."""

    user = "user"
    bot = "bot"
    admin = "admin"


BOT_SENDER_ID = "bot"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Conversation(Base):
    """One external contact's ongoing dialogue.

    Attributes:
        id: UUID primary key.
        external_contact_id: Normalized contact address (phone-derived);
            lookup key for routing inbound messages.
        display_name: Optional human-readable name (WhatsApp push name).
        status: active, pending, or closed.
        is_automated_control: True when the automated responder owns
            replies, False when a human operator does.
        assigned_operator_id: Operator who took over; only set while
            is_automated_control is False.
        last_message_summary: Denormalized copy of the latest message text.
        last_message_at: ISO8601 timestamp of the latest message.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conv_contact_created", "external_contact_id", "created_at"),
        Index("ix_conv_status_last_message", "status", "last_message_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    external_contact_id: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationStatus.active.value
    )
    is_automated_control: Mapped[bool] = mapped_column(nullable=False, default=True)
    assigned_operator_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    last_message_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.timestamp",
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id!r}, contact={self.external_contact_id!r}, "
            f"automated={self.is_automated_control})>"
        )


class ChatMessage(Base):
    """One unit of conversation traffic. Immutable once persisted.

    Attributes:
        id: UUID primary key.
        conversation_id: FK to Conversation (cascading lifetime).
        sender_type: user, bot, or admin.
        sender_id: External contact id, "bot", or the operator id.
        content: Text body (None for media-only messages).
        media_type: MIME type when the message carried media.
        external_message_id: Transport-assigned message id, when known.
        timestamp: ISO8601 creation timestamp.
        is_read: True for outbound messages, False for fresh inbound ones.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chatmsg_conv_ts", "conversation_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_type: Mapped[str] = mapped_column(String(10), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(100), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_message_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    timestamp: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    is_read: Mapped[bool] = mapped_column(nullable=False, default=False)

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id!r}, sender_type={self.sender_type!r}, "
            f"conversation_id={self.conversation_id!r})>"
        )
