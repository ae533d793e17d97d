"""
Order Service: Realtime client connection

Each WebSocket gets a bounded outbound queue drained by its own writer task,
so publishing to a room never waits on a slow client. When the queue is full
the event is dropped: delivery is at-most-once and clients resync by
re-fetching over REST.
"""
import asyncio
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, websocket: WebSocket, user_id: str, max_queue: int = 100):
        self.websocket = websocket
        self.user_id = user_id
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_queue)

    def enqueue(self, message: dict[str, Any]) -> bool:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping %s for user %s: outbound queue full", message.get("event"), self.user_id
            )
            return False
        return True

    async def writer(self) -> None:
        """Forward queued messages to the socket until cancelled or closed."""
        try:
            while True:
                message = await self.queue.get()
                await self.websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Writer for user %s stopped: %s", self.user_id, exc)

    def __repr__(self) -> str:
        return f"<Connection user={self.user_id}>"
