"""Automated responders invoked for conversations under bot control.

A responder is an opaque, possibly slow, possibly failing function of
(message, conversation) -> reply text. The ingestion pipeline catches and
logs its failures; an empty reply means "say nothing".
"""

import logging
from typing import Protocol

from src.config import ResponderConfig
from src.db.models import ChatMessage, Conversation

logger = logging.getLogger(__name__)


class AutomatedResponder(Protocol):
    """Produces the bot reply for an inbound message."""

    async def respond(self, message: ChatMessage, conversation: Conversation) -> str:
        ...


class EchoResponder:
    """Placeholder responder that acknowledges the inbound text."""

    async def respond(self, message: ChatMessage, conversation: Conversation) -> str:
        if message.content:
            return f'This is an automated response to: "{message.content}"'
        return "This is an automated response to your message."


class AnthropicResponder:
    """Responder backed by a Claude messages call.

    The client is created lazily so construction does not require an
    API key.
    """

    def __init__(self, config: ResponderConfig, client=None) -> None:
        self._config = config
        self._client = client

    def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic()
        return self._client

    async def respond(self, message: ChatMessage, conversation: Conversation) -> str:
        if not message.content:
            return ""
        name = conversation.display_name or "the customer"
        response = await self._get_client().messages.create(
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            system=self._config.system_prompt,
            messages=[{
                "role": "user",
                "content": f"Message from {name}:\n{message.content}",
            }],
        )
        if not response.content:
            return ""
        return response.content[0].text.strip()


def build_responder(config: ResponderConfig) -> AutomatedResponder:
    """Pick the responder implementation named in config."""
    if config.kind == "anthropic":
        logger.info("Using Anthropic responder (model=%s)", config.model)
        return AnthropicResponder(config)
    return EchoResponder()
