"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the ChatRelay REST API:
WhatsApp session control, outbound sends, takeover, and the dashboard's
conversation views.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# Enums for API validation


class TakeoverAction(str, Enum):
    """Who should own replies after a takeover request."""

    admin = "admin"
    bot = "bot"


# WhatsApp session schemas


class ClientInfoResponse(BaseModel):
    """Linked WhatsApp account."""

    wid: str | None = None
    pushname: str | None = None
    platform: str | None = None


class SessionStatusResponse(BaseModel):
    """Snapshot of the WhatsApp session."""

    status: str
    qr_code: str | None = None
    client_info: ClientInfoResponse | None = None
    last_error: str | None = None


class SendMessageRequest(BaseModel):
    """Request schema for sending a WhatsApp message."""

    phone: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=4096)
    conversation_id: str = Field(..., min_length=1)
    is_admin: bool = False


class TakeoverRequest(BaseModel):
    """Request schema for switching conversation control."""

    conversation_id: str = Field(..., min_length=1)
    action: TakeoverAction


# Conversation schemas


class ChatMessageResponse(BaseModel):
    """Response schema for a chat message."""

    id: str
    conversation_id: str
    sender_type: str
    sender_id: str
    content: str | None
    media_type: str | None = None
    external_message_id: str | None = None
    timestamp: str
    is_read: bool

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    """Response schema for a conversation."""

    id: str
    external_contact_id: str
    display_name: str | None = None
    status: str
    is_automated_control: bool
    assigned_operator_id: str | None = None
    last_message_summary: str | None = None
    last_message_at: str | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class ConversationListResponse(BaseModel):
    """Response schema for listing conversations."""

    conversations: list[ConversationResponse]
    limit: int
    offset: int


class MessageListResponse(BaseModel):
    """Response schema for a conversation's messages."""

    conversation_id: str
    messages: list[ChatMessageResponse]


class MarkReadResponse(BaseModel):
    """Response schema for marking a conversation read."""

    conversation_id: str
    updated: int
