"""Service layer for ChatRelay.

Provides the bridge core: session lifecycle, conversation routing,
message ingestion, takeover arbitration and outbound dispatch.
"""

from src.services.events import SessionEvent, SessionEventHub
from src.services.runtime import ChatRelay, build_chat_relay
from src.services.session_lifecycle import (
    ConnectionStatus,
    SessionLifecycleManager,
    SessionState,
)

__all__ = [
    "ChatRelay",
    "build_chat_relay",
    "ConnectionStatus",
    "SessionEvent",
    "SessionEventHub",
    "SessionLifecycleManager",
    "SessionState",
]
