"""Tests for the /api/v1/whatsapp routes."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api.routes.whatsapp import _event_generator
from src.services.events import SessionEvent

BRIDGE_KEY = "bridge-secret"
CONTACT = "15551234567"

BASE = "/api/v1/whatsapp"


class TestSessionControl:

    def test_status_starts_disconnected(self, client):
        response = client.get(f"{BASE}/status")

        assert response.status_code == 200
        assert response.json() == {
            "status": "disconnected",
            "qr_code": None,
            "client_info": None,
            "last_error": None,
        }

    def test_start_connects(self, client, gateway_factory):
        response = client.post(f"{BASE}/start")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "connected"
        assert body["client_info"]["wid"] == "15550000000@c.us"
        assert len(gateway_factory.instances) == 1

    def test_start_is_idempotent(self, client, gateway_factory):
        client.post(f"{BASE}/start")
        client.post(f"{BASE}/start")

        assert len(gateway_factory.instances) == 1

    def test_start_failure_maps_to_503(self, client, gateway_factory):
        gateway_factory.gateway_kwargs["fail_start"] = True

        response = client.post(f"{BASE}/start")

        assert response.status_code == 503
        assert response.json()["error_code"] == "E-1001"
        assert client.get(f"{BASE}/status").json()["status"] == "disconnected"

    def test_logout_unlinks(self, client, gateway_factory):
        client.post(f"{BASE}/start")

        response = client.delete(f"{BASE}/session")

        assert response.status_code == 200
        assert response.json()["status"] == "disconnected"
        assert gateway_factory.latest.logged_out is True

    def test_logout_when_disconnected_is_noop(self, client):
        response = client.delete(f"{BASE}/session")
        assert response.status_code == 200
        assert response.json()["status"] == "disconnected"

    def test_identity_requires_connection(self, client):
        response = client.get(f"{BASE}/identity")

        assert response.status_code == 409
        assert response.json()["error_code"] == "E-2002"

    def test_identity_when_connected(self, client):
        client.post(f"{BASE}/start")

        response = client.get(f"{BASE}/identity")

        assert response.status_code == 200
        assert response.json() == {
            "wid": "15550000000@c.us",
            "pushname": "Support",
            "platform": "android",
        }


class TestSend:

    def test_send_lazily_starts_session(self, client, gateway_factory, conversation):
        response = client.post(f"{BASE}/send", json={
            "phone": CONTACT,
            "message": "Your order has shipped",
            "conversation_id": conversation.id,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["sender_type"] == "bot"
        assert body["sender_id"] == "bot"
        assert body["is_read"] is True
        assert body["external_message_id"] == "wamid-1"
        assert gateway_factory.latest.sent == [
            ("15551234567@c.us", "Your order has shipped")
        ]

    def test_admin_send_uses_operator_header(self, client, conversation):
        response = client.post(
            f"{BASE}/send",
            json={
                "phone": CONTACT,
                "message": "Hi, this is Sam from support",
                "conversation_id": conversation.id,
                "is_admin": True,
            },
            headers={"X-Operator-Id": "sam"},
        )

        assert response.status_code == 200
        assert response.json()["sender_type"] == "admin"
        assert response.json()["sender_id"] == "sam"

    def test_send_updates_conversation_summary(self, client, relay, conversation):
        client.post(f"{BASE}/send", json={
            "phone": CONTACT, "message": "On its way", "conversation_id": conversation.id,
        })

        stored = relay.store.get_conversation(conversation.id)
        assert stored.last_message_summary == "On its way"

    def test_reconnect_failure_maps_to_503(self, client, gateway_factory, conversation):
        gateway_factory.gateway_kwargs["fail_start"] = True

        response = client.post(f"{BASE}/send", json={
            "phone": CONTACT, "message": "hello", "conversation_id": conversation.id,
        })

        assert response.status_code == 503
        assert response.json()["error_code"] == "E-2001"
        assert len(gateway_factory.instances) == 1

    def test_transport_rejection_maps_to_502(self, client, gateway_factory, relay, conversation):
        gateway_factory.gateway_kwargs["fail_send"] = True

        response = client.post(f"{BASE}/send", json={
            "phone": CONTACT, "message": "hello", "conversation_id": conversation.id,
        })

        assert response.status_code == 502
        assert response.json()["error_code"] == "E-3001"
        assert relay.store.list_messages(conversation.id) == []

    def test_unknown_conversation_is_404(self, client, gateway_factory):
        response = client.post(f"{BASE}/send", json={
            "phone": CONTACT, "message": "hello", "conversation_id": "missing",
        })

        assert response.status_code == 404
        assert response.json()["error_code"] == "E-5001"
        assert gateway_factory.instances == []

    def test_empty_message_rejected(self, client, conversation):
        response = client.post(f"{BASE}/send", json={
            "phone": CONTACT, "message": "", "conversation_id": conversation.id,
        })
        assert response.status_code == 422


class TestTakeover:

    def test_admin_takeover(self, client, conversation):
        response = client.post(
            f"{BASE}/takeover",
            json={"conversation_id": conversation.id, "action": "admin"},
            headers={"X-Operator-Id": "sam"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["is_automated_control"] is False
        assert body["assigned_operator_id"] == "sam"

    def test_release_to_bot(self, client, conversation):
        client.post(
            f"{BASE}/takeover",
            json={"conversation_id": conversation.id, "action": "admin"},
        )

        response = client.post(
            f"{BASE}/takeover",
            json={"conversation_id": conversation.id, "action": "bot"},
        )

        assert response.status_code == 200
        assert response.json()["is_automated_control"] is True
        assert response.json()["assigned_operator_id"] is None

    def test_default_operator_id(self, client, conversation):
        response = client.post(
            f"{BASE}/takeover",
            json={"conversation_id": conversation.id, "action": "admin"},
        )
        assert response.json()["assigned_operator_id"] == "operator"

    def test_unknown_conversation_is_404(self, client):
        response = client.post(
            f"{BASE}/takeover",
            json={"conversation_id": "missing", "action": "admin"},
        )
        assert response.status_code == 404

    def test_invalid_action_rejected(self, client, conversation):
        response = client.post(
            f"{BASE}/takeover",
            json={"conversation_id": conversation.id, "action": "robot"},
        )
        assert response.status_code == 422


class TestBridgeWebhook:

    def test_requires_bridge_key(self, client):
        response = client.post(f"{BASE}/bridge-events", json={"event": "ready"})
        assert response.status_code == 401

    def test_wrong_key_rejected(self, client):
        response = client.post(
            f"{BASE}/bridge-events",
            json={"event": "ready"},
            headers={"X-Api-Key": "nope"},
        )
        assert response.status_code == 401

    def test_forwards_to_live_gateway(self, client, gateway_factory):
        client.post(f"{BASE}/start")
        raw = {"event": "message_ack", "data": {"id": "wamid-1", "ack": 2}}

        response = client.post(
            f"{BASE}/bridge-events", json=raw, headers={"X-Api-Key": BRIDGE_KEY}
        )

        assert response.status_code == 200
        assert response.json() == {"accepted": True}
        assert gateway_factory.latest.transport_events == [raw]

    def test_exempt_from_dashboard_key(self, client, monkeypatch):
        monkeypatch.setenv("CHATRELAY_API_KEY", "dashboard-key")

        response = client.post(
            f"{BASE}/bridge-events",
            json={"event": "ready"},
            headers={"X-Api-Key": BRIDGE_KEY},
        )

        assert response.status_code == 200

    def test_falls_back_to_dashboard_key(self, client, api_config, monkeypatch):
        api_config.bridge.api_key = ""
        monkeypatch.setenv("CHATRELAY_API_KEY", "dashboard-key")

        unauthenticated = client.post(f"{BASE}/bridge-events", json={"event": "ready"})
        authenticated = client.post(
            f"{BASE}/bridge-events",
            json={"event": "ready"},
            headers={"X-Api-Key": "dashboard-key"},
        )

        assert unauthenticated.status_code == 401
        assert authenticated.status_code == 200

    def test_open_when_no_key_configured(self, client, api_config):
        api_config.bridge.api_key = ""

        response = client.post(f"{BASE}/bridge-events", json={"event": "ready"})

        assert response.status_code == 200


class TestEventStream:

    @pytest.mark.asyncio
    async def test_generator_formats_events_and_unsubscribes(self, relay):
        queue = relay.subscribe()
        relay.event_hub.publish(SessionEvent.qr_ready, {"qr_code": "2@challenge"})
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[False, True])

        items = [item async for item in _event_generator(request, relay, queue)]

        assert [json.loads(item["data"]) for item in items] == [
            {"event": "qr-ready", "data": {"qr_code": "2@challenge"}}
        ]
        assert relay.event_hub.subscriber_count == 0
