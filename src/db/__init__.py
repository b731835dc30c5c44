"""Database module for ChatRelay conversation persistence."""

from src.db.connection import (
    SessionLocal,
    close_db,
    engine,
    init_db,
)
from src.db.models import (
    BOT_SENDER_ID,
    Base,
    ChatMessage,
    Conversation,
    ConversationStatus,
    SenderType,
)

__all__ = [
    # Models
    "Base",
    "Conversation",
    "ChatMessage",
    # Enums
    "ConversationStatus",
    "SenderType",
    "BOT_SENDER_ID",
    # Connection
    "engine",
    "SessionLocal",
    "init_db",
    "close_db",
]
