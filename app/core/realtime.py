"""In-process real-time event hub backing the SSE endpoint."""

import asyncio
import json
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger()


class RealtimeHub:
    """Fan-out of events to every live connection of a user.

    Each connection owns a bounded queue; a slow consumer drops events
    rather than blocking the sender.
    """

    def __init__(self, queue_size: int = 100):
        """Initialize hub with per-connection queue size."""
        self.queue_size = queue_size
        self._connections: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def connect(self, user_id: str) -> asyncio.Queue:
        """Register a new connection for a user."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._connections[user_id].add(queue)
        logger.info("realtime_connected", user_id=user_id, connections=len(self._connections[user_id]))
        return queue

    def disconnect(self, user_id: str, queue: asyncio.Queue) -> None:
        """Remove a connection."""
        queues = self._connections.get(user_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._connections[user_id]
        logger.info("realtime_disconnected", user_id=user_id)

    def connection_count(self, user_id: str) -> int:
        """Number of live connections for a user."""
        return len(self._connections.get(user_id, ()))

    @property
    def total_connections(self) -> int:
        return sum(len(queues) for queues in self._connections.values())

    async def send_to_user(self, user_id: str, event_type: str, payload: dict[str, Any]) -> int:
        """
        Push an event to all live connections of a user.

        Args:
            user_id: Recipient user id
            event_type: Event name, e.g. ``appointment_booked``
            payload: JSON-serializable event data

        Returns:
            Number of connections the event was queued on
        """
        event = {
            "type": event_type,
            "data": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        delivered = 0
        for queue in list(self._connections.get(user_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("realtime_queue_full", user_id=user_id, event_type=event_type)
        return delivered


def format_sse(event: dict[str, Any]) -> str:
    """Render an event as a server-sent events frame."""
    return f"event: {event['type']}\ndata: {json.dumps(event, default=str)}\n\n"


# Global hub instance
realtime_hub = RealtimeHub()


def get_realtime_hub() -> RealtimeHub:
    """Get the process-wide realtime hub."""
    return realtime_hub
