"""Shared FastAPI dependencies."""

from fastapi import Header, Request

from src.config import ChatRelayConfig
from src.services.runtime import ChatRelay

DEFAULT_OPERATOR_ID = "operator"


def get_relay(request: Request) -> ChatRelay:
    """Return the ChatRelay built by the application lifespan."""
    return request.app.state.relay


def get_config(request: Request) -> ChatRelayConfig:
    return request.app.state.config


def get_operator_id(
    x_operator_id: str | None = Header(default=None, alias="X-Operator-Id"),
) -> str:
    """Operator identity supplied by the dashboard; authentication is upstream."""
    return (x_operator_id or "").strip() or DEFAULT_OPERATOR_ID
