"""
Order Service: Realtime WebSocket endpoint

Protocol (JSON text frames, {"event": ..., "data": ...}):
  client -> server   join  <user id>   subscribe to that user's room
                     leave <user id>   unsubscribe
  server -> client   newOrder / orderUpdate   populated order snapshot
                     joined / left            room acknowledgement
                     error                    {"detail": ...}

The token travels as the ?token= query parameter; a connection may only join
its own room. Disconnecting removes it from every room it joined.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, status
from jose import JWTError

from canteen.core.config import get_settings
from canteen.core.errors import Forbidden
from canteen.core.security import actor_from_claims, decode_token
from canteen.realtime.connection import Connection
from canteen.realtime.rooms import RoomRegistry

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


def _error(detail: str) -> dict:
    return {"event": "error", "data": {"detail": detail}}


def handle_message(rooms: RoomRegistry, conn: Connection, raw: str | None) -> dict:
    """Apply one client frame to the room table and return the reply frame."""
    if raw is None:
        return _error("Frames must be JSON objects.")
    try:
        message = json.loads(raw)
    except ValueError:
        return _error("Frames must be JSON objects.")
    if not isinstance(message, dict):
        return _error("Frames must be JSON objects.")

    event, room = message.get("event"), message.get("data")
    if event not in ("join", "leave"):
        return _error(f"Unknown event {event!r}.")
    if not room:
        return _error("A user id is required.")
    room = str(room)
    if room != conn.user_id:
        return _error("Connections may only join their own room.")

    if event == "join":
        rooms.join(conn, room)
        return {"event": "joined", "data": room}
    rooms.leave(conn, room)
    return {"event": "left", "data": room}


@router.websocket("/ws")
async def order_events(websocket: WebSocket, token: str = ""):
    try:
        actor = actor_from_claims(decode_token(token))
    except (JWTError, Forbidden):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    rooms: RoomRegistry = websocket.app.state.rooms
    conn = Connection(websocket, actor.id, settings.WS_OUTBOUND_QUEUE_SIZE)
    writer = asyncio.create_task(conn.writer())
    logger.info("Realtime client connected: %s (%s)", actor.id, actor.role.value)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # binary frames have no "text"
            conn.enqueue(handle_message(rooms, conn, message.get("text")))
    finally:
        left = rooms.disconnect(conn)
        writer.cancel()
        logger.info("Realtime client disconnected: %s (left %d rooms)", actor.id, len(left))
