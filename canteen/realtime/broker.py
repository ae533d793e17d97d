"""
Order Service: Realtime brokers

publish(room, event, payload) routes one event to every local connection in
the room.

  InMemoryBroker  single instance; delivers straight into the RoomRegistry.
  RedisBroker     multi-instance; publishes to Redis channel room:{user_id}
                  and every instance relays pattern-subscribed messages into
                  its own RoomRegistry.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from canteen.realtime.rooms import RoomRegistry

logger = logging.getLogger(__name__)

RELAY_RETRY_SECONDS = 1.0


class Broker(ABC):
    def __init__(self, rooms: RoomRegistry):
        self.rooms = rooms

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def publish(self, room: str, event: str, payload: dict[str, Any]) -> None:
        ...


class InMemoryBroker(Broker):
    async def publish(self, room: str, event: str, payload: dict[str, Any]) -> None:
        delivered = self.rooms.deliver(room, {"event": event, "data": payload})
        logger.debug("%s -> room %s (%d connections)", event, room, delivered)


class RedisBroker(Broker):
    def __init__(self, rooms: RoomRegistry, redis: aioredis.Redis, prefix: str = "room:"):
        super().__init__(rooms)
        self.redis = redis
        self.prefix = prefix
        self._pubsub = None
        self._relay_task: asyncio.Task | None = None

    async def start(self) -> None:
        self._pubsub = self.redis.pubsub()
        await self._pubsub.psubscribe(f"{self.prefix}*")
        self._relay_task = asyncio.create_task(self._relay())

    async def stop(self) -> None:
        if self._relay_task is not None:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Realtime relay task had failed before shutdown")
            self._relay_task = None
        if self._pubsub is not None:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    async def publish(self, room: str, event: str, payload: dict[str, Any]) -> None:
        await self.redis.publish(f"{self.prefix}{room}", json.dumps({"event": event, "data": payload}))

    def dispatch(self, message: dict[str, Any]) -> int:
        """Deliver one pub/sub message to the local room it was published to."""
        channel = message["channel"]
        if not channel.startswith(self.prefix):
            return 0
        try:
            envelope = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("Discarding malformed realtime message on %s", channel)
            return 0
        return self.rooms.deliver(channel[len(self.prefix):], envelope)

    async def _relay(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError:
                # PubSub reconnects and re-subscribes on the next call
                logger.warning("Realtime relay lost Redis, retrying in %.1fs", RELAY_RETRY_SECONDS, exc_info=True)
                await asyncio.sleep(RELAY_RETRY_SECONDS)
                continue
            if message and message["type"] == "pmessage":
                self.dispatch(message)
