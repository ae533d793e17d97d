"""
Order Service: Order event notifier

Pushes order snapshots to the rooms of the two parties that own the order.
Each room gets its own send, so a future consumer can redact per party.

Broadcasting runs after the store commit and is best effort: a failure is
logged and never reaches the HTTP caller, because the state change already
happened. Clients resync by re-fetching.
"""
import logging
from typing import Any

from canteen.realtime.broker import Broker

logger = logging.getLogger(__name__)

NEW_ORDER = "newOrder"
ORDER_UPDATE = "orderUpdate"


class OrderNotifier:
    def __init__(self, broker: Broker):
        self.broker = broker

    async def order_created(self, snapshot: dict[str, Any]) -> None:
        await self._send(snapshot["manager_id"], NEW_ORDER, snapshot)
        await self._send(snapshot["student_id"], ORDER_UPDATE, snapshot)

    async def order_changed(self, snapshot: dict[str, Any]) -> None:
        await self._send(snapshot["student_id"], ORDER_UPDATE, snapshot)
        await self._send(snapshot["manager_id"], ORDER_UPDATE, snapshot)

    async def _send(self, room: str, event: str, snapshot: dict[str, Any]) -> None:
        try:
            await self.broker.publish(room, event, snapshot)
        except Exception:
            logger.exception("Failed to publish %s for order %s to room %s", event, snapshot["id"], room)
