"""Tests for MessageIngestionPipeline.

Messages are delivered the way production delivers them: a connected
FakeGateway fires message events into the lifecycle manager, which hands
them to the pipeline.
"""

import asyncio
from unittest.mock import patch

import pytest

from src.db.models import ChatMessage
from src.errors import PersistenceError
from src.services.gateway import InboundMessage, MediaPayload

CONTACT = "15551234567"
ADDRESS = "15551234567@c.us"


async def _connected(build_relay, **gateway_kwargs):
    relay, factory = build_relay(auto_connect=True, **gateway_kwargs)
    await relay.start()
    return relay, factory.latest


@pytest.mark.asyncio
async def test_inbound_message_creates_conversation_and_bot_reply(build_relay, responder):
    relay, gateway = await _connected(build_relay)

    await gateway.emit_message(ADDRESS, "hello")

    conversations = relay.store.list_conversations()
    assert len(conversations) == 1
    conv = conversations[0]
    assert conv.external_contact_id == CONTACT
    assert conv.is_automated_control is True

    messages = relay.store.list_messages(conv.id)
    assert [(m.sender_type, m.content) for m in messages] == [
        ("user", "hello"),
        ("bot", "Thanks, we got your message."),
    ]
    assert messages[0].is_read is False
    assert messages[0].sender_id == CONTACT
    assert messages[1].is_read is True

    responder.respond.assert_awaited_once()
    assert gateway.sent == [(ADDRESS, "Thanks, we got your message.")]


@pytest.mark.asyncio
async def test_operator_takeover_suppresses_responder(build_relay, responder):
    relay, gateway = await _connected(build_relay)
    conv = await relay.router.get_or_create(CONTACT)
    await relay.assume_human_control(conv.id, "op-1")

    await gateway.emit_message(ADDRESS, "is anyone there?")

    messages = relay.store.list_messages(conv.id)
    assert [(m.sender_type, m.content) for m in messages] == [("user", "is anyone there?")]
    responder.respond.assert_not_awaited()
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_release_restores_automated_replies(build_relay, responder):
    relay, gateway = await _connected(build_relay)
    conv = await relay.router.get_or_create(CONTACT)
    await relay.assume_human_control(conv.id, "op-1")
    await relay.release_to_automation(conv.id)

    await gateway.emit_message(ADDRESS, "hello again")

    responder.respond.assert_awaited_once()


@pytest.mark.asyncio
async def test_broadcast_channel_is_ignored(build_relay, responder):
    relay, gateway = await _connected(build_relay)

    await gateway.emit_message("status@broadcast", "story update")

    assert relay.store.list_conversations() == []
    responder.respond.assert_not_awaited()


@pytest.mark.asyncio
async def test_own_messages_are_ignored(build_relay, responder):
    relay, gateway = await _connected(build_relay)

    await gateway.emit_message(ADDRESS, "sent from phone", from_me=True)

    assert relay.store.list_conversations() == []


@pytest.mark.asyncio
async def test_bot_message_never_triggers_responder(build_relay, responder):
    """Loop guard: a bot-authored message does not start another reply cycle."""
    relay, _ = await _connected(build_relay)
    conv = await relay.router.get_or_create(CONTACT)
    bot_message = relay.store.insert_message(conv.id, "bot", "bot", "echo", is_read=True)

    result = await relay.pipeline.maybe_respond(bot_message, conv, ADDRESS)

    assert result is None
    responder.respond.assert_not_awaited()


@pytest.mark.asyncio
async def test_media_type_recorded(build_relay, responder):
    responder.respond.return_value = ""
    relay, gateway = await _connected(
        build_relay, media=MediaPayload(mimetype="image/jpeg", data="AAAA")
    )

    await gateway.emit_message(ADDRESS, None, message_id="m-1", has_media=True)

    conv = relay.store.list_conversations()[0]
    user_message = relay.store.list_messages(conv.id)[0]
    assert user_message.media_type == "image/jpeg"
    assert user_message.content is None
    assert conv.last_message_summary == "[image/jpeg]"


@pytest.mark.asyncio
async def test_media_fetch_failure_keeps_text(build_relay):
    relay, gateway = await _connected(build_relay, media=RuntimeError("media expired"))

    await gateway.emit_message(ADDRESS, "see photo", has_media=True)

    conv = relay.store.list_conversations()[0]
    user_message = relay.store.list_messages(conv.id)[0]
    assert user_message.content == "see photo"
    assert user_message.media_type is None


@pytest.mark.asyncio
async def test_responder_failure_is_contained(build_relay, responder):
    relay, gateway = await _connected(build_relay)
    responder.respond.side_effect = RuntimeError("model overloaded")

    await gateway.emit_message(ADDRESS, "hello")

    conv = relay.store.list_conversations()[0]
    assert [m.sender_type for m in relay.store.list_messages(conv.id)] == ["user"]
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_empty_reply_is_not_sent(build_relay, responder):
    relay, gateway = await _connected(build_relay)
    responder.respond.return_value = ""

    await gateway.emit_message(ADDRESS, "hello")

    assert gateway.sent == []


@pytest.mark.asyncio
async def test_failed_reply_send_keeps_user_message(build_relay):
    relay, gateway = await _connected(build_relay, fail_send=True)

    await gateway.emit_message(ADDRESS, "hello")

    conv = relay.store.list_conversations()[0]
    assert [m.sender_type for m in relay.store.list_messages(conv.id)] == ["user"]


@pytest.mark.asyncio
async def test_persistence_failure_drops_only_that_message(build_relay):
    relay, gateway = await _connected(build_relay)
    original = relay.store.insert_message
    calls = {"n": 0}

    def flaky(*args, **kwargs) -> ChatMessage:
        calls["n"] += 1
        if calls["n"] == 1:
            raise PersistenceError("database is locked")
        return original(*args, **kwargs)

    with patch.object(relay.store, "insert_message", side_effect=flaky):
        await gateway.emit_message(ADDRESS, "lost", message_id="m-1")
        await gateway.emit_message(ADDRESS, "kept", message_id="m-2")

    conv = relay.store.list_conversations()[0]
    contents = [m.content for m in relay.store.list_messages(conv.id) if m.sender_type == "user"]
    assert contents == ["kept"]


@pytest.mark.asyncio
async def test_message_received_event_published(build_relay):
    relay, gateway = await _connected(build_relay)
    queue = relay.subscribe()

    await gateway.emit_message(ADDRESS, "hello", push_name="Ana")

    event = queue.get_nowait()
    assert event["event"] == "message-received"
    assert event["data"]["message"]["content"] == "hello"
    assert event["data"]["conversation"]["external_contact_id"] == CONTACT
    assert event["data"]["conversation"]["display_name"] == "Ana"


@pytest.mark.asyncio
async def test_concurrent_first_messages_attach_to_one_conversation(build_relay):
    relay, _ = await _connected(build_relay)

    await asyncio.gather(
        relay.pipeline.handle_inbound(InboundMessage(sender=ADDRESS, body="one", message_id="a")),
        relay.pipeline.handle_inbound(InboundMessage(sender=ADDRESS, body="two", message_id="b")),
    )

    conversations = relay.store.list_conversations()
    assert len(conversations) == 1
    user_messages = [
        m for m in relay.store.list_messages(conversations[0].id) if m.sender_type == "user"
    ]
    assert sorted(m.content for m in user_messages) == ["one", "two"]
