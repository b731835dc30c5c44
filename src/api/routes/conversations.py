"""API routes for the operator dashboard's conversation views.

Read-only listing and history, plus marking a conversation's inbound
messages read. Control changes go through /whatsapp/takeover.
"""

import logging

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_relay
from src.api.schemas import (
    ChatMessageResponse,
    ConversationListResponse,
    ConversationResponse,
    MarkReadResponse,
    MessageListResponse,
)
from src.db.models import ConversationStatus
from src.services.runtime import ChatRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    status: ConversationStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    relay: ChatRelay = Depends(get_relay),
) -> ConversationListResponse:
    """List conversations, most recent activity first.

    Args:
        status: Optional status filter.
        limit: Max results (default 50).
        offset: Pagination offset.
        relay: ChatRelay (injected).
    """
    conversations = await relay.list_conversations(
        status=status.value if status else None, limit=limit, offset=offset
    )
    return ConversationListResponse(
        conversations=[ConversationResponse.model_validate(c) for c in conversations],
        limit=limit,
        offset=offset,
    )


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    relay: ChatRelay = Depends(get_relay),
) -> ConversationResponse:
    conversation = await relay.get_conversation(conversation_id)
    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: str,
    limit: int | None = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    relay: ChatRelay = Depends(get_relay),
) -> MessageListResponse:
    """Return a conversation's messages in timestamp order.

    Raises:
        NotFoundError: If the conversation does not exist (404).
    """
    messages = await relay.list_messages(conversation_id, limit=limit, offset=offset)
    return MessageListResponse(
        conversation_id=conversation_id,
        messages=[ChatMessageResponse.model_validate(m) for m in messages],
    )


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: str,
    relay: ChatRelay = Depends(get_relay),
) -> MarkReadResponse:
    updated = await relay.mark_read(conversation_id)
    logger.info("Marked %d messages read in conversation %s", updated, conversation_id)
    return MarkReadResponse(conversation_id=conversation_id, updated=updated)
