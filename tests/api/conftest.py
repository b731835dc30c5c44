"""Pytest fixtures for API tests.

The application lifespan still runs (it builds its own idle relay), but
routes receive a ChatRelay wired to FakeGateways through
``app.dependency_overrides``.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import get_config, get_relay
from src.api.main import app
from src.api.middleware.auth import reset_rate_limiter
from src.config import BridgeConfig, ChatRelayConfig, SessionConfig
from src.db.models import Conversation
from src.services.runtime import ChatRelay, build_chat_relay
from tests.helpers import FakeGatewayFactory

BRIDGE_KEY = "bridge-secret"
CONTACT = "15551234567"


@pytest.fixture
def api_config() -> ChatRelayConfig:
    return ChatRelayConfig(
        bridge=BridgeConfig(api_key=BRIDGE_KEY),
        session=SessionConfig(start_timeout_seconds=0.5, send_start_timeout_seconds=0.5),
    )


@pytest.fixture
def gateway_factory() -> FakeGatewayFactory:
    """Gateways connect as soon as they start; tests flip kwargs as needed."""
    return FakeGatewayFactory(auto_connect=True)


@pytest.fixture
def api_responder() -> AsyncMock:
    mock = AsyncMock()
    mock.respond.return_value = ""
    return mock


@pytest.fixture
def relay(api_config, session_factory, gateway_factory, api_responder) -> ChatRelay:
    return build_chat_relay(
        api_config,
        session_factory,
        gateway_factory=gateway_factory,
        responder=api_responder,
    )


@pytest.fixture
def client(relay: ChatRelay, api_config: ChatRelayConfig, monkeypatch) -> Generator[TestClient, None, None]:
    """TestClient whose routes use the fake-backed relay.

    Args:
        relay: ChatRelay fixture.
        api_config: Config returned by the get_config dependency.

    Yields:
        TestClient configured for testing.
    """
    monkeypatch.delenv("CHATRELAY_API_KEY", raising=False)
    reset_rate_limiter()
    app.dependency_overrides[get_relay] = lambda: relay
    app.dependency_overrides[get_config] = lambda: api_config
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    reset_rate_limiter()


@pytest.fixture
def conversation(relay: ChatRelay) -> Conversation:
    """A conversation under automated control for CONTACT."""
    return relay.store.insert_conversation(CONTACT, display_name="Ada")
