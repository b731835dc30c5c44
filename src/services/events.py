"""Session event hub for pushing lifecycle and message events to consumers.

Replaces ad-hoc listener attachment with a fixed event vocabulary and one
subscription queue per consumer (an SSE connection, a test, a worker).
Repeated session starts never add listeners; consumers come and go via
subscribe()/unsubscribe().
"""

import asyncio
import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    """Events published to subscribers."""

    qr_ready = "qr-ready"
    connected = "connected"
    disconnected = "disconnected"
    message_received = "message-received"
    auth_failure = "auth-failure"
    error = "error"


class SessionEventHub:
    """Fan-out of session events to per-consumer asyncio queues.

    publish() never blocks: a consumer whose queue is full loses its
    oldest pending event, so a stalled SSE client cannot hold up the
    gateway's event delivery.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        """Initialize hub with no subscribers.

        Args:
            max_queue_size: Per-subscriber queue bound.
        """
        self._max_queue_size = max_queue_size
        self._queues: list[asyncio.Queue[dict[str, Any]]] = []

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        """Create and register a queue for a new consumer."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(
            maxsize=self._max_queue_size
        )
        self._queues.append(queue)
        logger.debug("Event hub subscriber added (total=%d)", len(self._queues))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        """Remove a consumer's queue. No-op if it is not registered."""
        try:
            self._queues.remove(queue)
        except ValueError:
            return
        logger.debug("Event hub subscriber removed (total=%d)", len(self._queues))

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def publish(self, event: SessionEvent, data: dict[str, Any] | None = None) -> None:
        """Deliver an event to every subscriber without blocking.

        Args:
            event: Event name from the fixed vocabulary.
            data: JSON-serializable payload.
        """
        item = {"event": event.value, "data": data or {}}
        for queue in list(self._queues):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.warning(
                    "Event hub subscriber queue full; dropped oldest event before %s",
                    event.value,
                )
            queue.put_nowait(item)
