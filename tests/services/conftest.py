"""Fixtures for service tests: a fully wired ChatRelay over a FakeGateway."""

from unittest.mock import AsyncMock

import pytest

from src.services.runtime import build_chat_relay
from tests.helpers import FakeGatewayFactory


@pytest.fixture
def responder() -> AsyncMock:
    """Responder double; replies with a fixed text by default."""
    mock = AsyncMock()
    mock.respond.return_value = "Thanks, we got your message."
    return mock


@pytest.fixture
def build_relay(fast_config, session_factory, responder):
    """Build a ChatRelay whose gateways are FakeGateways.

    Returns:
        Callable taking FakeGateway kwargs and returning (relay, factory).
    """

    def _build(**gateway_kwargs):
        factory = FakeGatewayFactory(**gateway_kwargs)
        relay = build_chat_relay(
            fast_config,
            session_factory,
            gateway_factory=factory,
            responder=responder,
        )
        return relay, factory

    return _build
