"""FastAPI routes for the WhatsApp session.

Session control (status/start/logout/identity), outbound sends,
conversation takeover, the SSE event stream, and the webhook the
WhatsApp-Web bridge posts its raw events to.
"""

import asyncio
import json
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from src.api.dependencies import get_config, get_operator_id, get_relay
from src.api.middleware.auth import get_expected_api_key, keys_match
from src.api.schemas import (
    ChatMessageResponse,
    ClientInfoResponse,
    ConversationResponse,
    SendMessageRequest,
    SessionStatusResponse,
    TakeoverAction,
    TakeoverRequest,
)
from src.config import ChatRelayConfig
from src.db.models import BOT_SENDER_ID, SenderType
from src.services.runtime import ChatRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])

_PING_INTERVAL_SECONDS = 15.0


@router.get("/status", response_model=SessionStatusResponse)
def get_status(relay: ChatRelay = Depends(get_relay)) -> dict:
    """Return the current session snapshot. Never blocks."""
    return relay.status().to_dict()


@router.post("/start", response_model=SessionStatusResponse)
async def start_session(relay: ChatRelay = Depends(get_relay)) -> dict:
    """Start the session (idempotent) and return the resulting snapshot.

    Raises:
        GatewayConnectionError: Mapped to 503 by the error handler.
    """
    state = await relay.start()
    return state.to_dict()


@router.delete("/session", response_model=SessionStatusResponse)
async def logout_session(relay: ChatRelay = Depends(get_relay)) -> dict:
    """Log out (or cancel a pending handshake) and return the snapshot."""
    state = await relay.logout()
    return state.to_dict()


@router.get("/identity", response_model=ClientInfoResponse)
async def get_identity(relay: ChatRelay = Depends(get_relay)) -> dict:
    """Return the linked account. 409 unless connected."""
    identity = await relay.identity()
    return identity.to_dict()


@router.post("/send", response_model=ChatMessageResponse)
async def send_message(
    payload: SendMessageRequest,
    relay: ChatRelay = Depends(get_relay),
    operator_id: str = Depends(get_operator_id),
) -> ChatMessageResponse:
    """Send a message as the bot, or as the calling operator when is_admin.

    Error mapping (via the DomainError handler):
        404 unknown conversation, 503 E-2001 reconnect required,
        502 E-3001 transport rejected this message.
    """
    if payload.is_admin:
        sender_type, sender_id = SenderType.admin, operator_id
    else:
        sender_type, sender_id = SenderType.bot, BOT_SENDER_ID

    message = await relay.send(
        payload.phone,
        payload.message,
        payload.conversation_id,
        sender_type=sender_type,
        sender_id=sender_id,
    )
    return ChatMessageResponse.model_validate(message)


@router.post("/takeover", response_model=ConversationResponse)
async def takeover(
    payload: TakeoverRequest,
    relay: ChatRelay = Depends(get_relay),
    operator_id: str = Depends(get_operator_id),
) -> ConversationResponse:
    """Hand a conversation to the calling operator or back to the bot."""
    if payload.action is TakeoverAction.admin:
        conversation = await relay.assume_human_control(
            payload.conversation_id, operator_id
        )
    else:
        conversation = await relay.release_to_automation(payload.conversation_id)
    return ConversationResponse.model_validate(conversation)


async def _event_generator(
    request: Request,
    relay: ChatRelay,
    queue: asyncio.Queue,
) -> AsyncGenerator[dict, None]:
    """Generate SSE events from the hub queue, pinging every 15 seconds.

    Yields:
        Event dictionaries with a JSON 'data' payload carrying the event
        name and its data.
    """
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(
                    queue.get(), timeout=_PING_INTERVAL_SECONDS
                )
                yield {
                    "data": json.dumps({
                        "event": event["event"],
                        "data": event["data"],
                    }),
                }
            except asyncio.TimeoutError:
                yield {"data": json.dumps({"event": "ping"})}
    finally:
        relay.unsubscribe(queue)


@router.get("/events")
async def stream_events(
    request: Request,
    relay: ChatRelay = Depends(get_relay),
) -> EventSourceResponse:
    """Stream session and message events via Server-Sent Events.

    The first event is a status snapshot so the dashboard can render
    without a separate poll.
    """
    queue = relay.subscribe()
    queue.put_nowait({"event": "status", "data": relay.status().to_dict()})
    return EventSourceResponse(
        _event_generator(request, relay, queue),
        media_type="text/event-stream",
    )


@router.post("/bridge-events")
async def bridge_events(
    request: Request,
    raw: dict[str, Any],
    relay: ChatRelay = Depends(get_relay),
    config: ChatRelayConfig = Depends(get_config),
) -> dict:
    """Webhook for raw events pushed by the WhatsApp-Web bridge.

    Raises:
        HTTPException: 401 if a key is configured and not presented.
    """
    # Without a bridge key the dashboard key guards the webhook.
    expected = config.bridge.api_key or get_expected_api_key()
    if expected and not keys_match(request.headers.get("X-Api-Key", ""), expected):
        logger.warning("Rejected bridge event with a missing or invalid key")
        raise HTTPException(status_code=401, detail="Invalid or missing bridge key")

    await relay.handle_bridge_event(raw)
    return {"accepted": True}
