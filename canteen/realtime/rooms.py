"""
Order Service: Room membership

A room is keyed by a user id. Connections join their own room after
authenticating and are removed from every room when they disconnect, whether
or not the client sent "leave" first.
"""
import logging
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Member(Protocol):
    user_id: str

    def enqueue(self, message: dict[str, Any]) -> bool: ...


class RoomRegistry:
    def __init__(self):
        self._rooms: dict[str, set[Member]] = defaultdict(set)
        self._memberships: dict[Member, set[str]] = defaultdict(set)

    def join(self, member: Member, room: str) -> None:
        self._rooms[room].add(member)
        self._memberships[member].add(room)
        logger.debug("%r joined room %s", member, room)

    def leave(self, member: Member, room: str) -> None:
        self._discard(member, room)
        rooms = self._memberships.get(member)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                del self._memberships[member]
        logger.debug("%r left room %s", member, room)

    def disconnect(self, member: Member) -> set[str]:
        """Drop the member from all of its rooms; returns the rooms it was in."""
        rooms = self._memberships.pop(member, set())
        for room in rooms:
            self._discard(member, room)
        return rooms

    def members(self, room: str) -> set[Member]:
        return set(self._rooms.get(room, ()))

    def rooms_of(self, member: Member) -> set[str]:
        return set(self._memberships.get(member, ()))

    def deliver(self, room: str, message: dict[str, Any]) -> int:
        """Queue message for every member of room; returns how many accepted it."""
        return sum(1 for member in self.members(room) if member.enqueue(message))

    def _discard(self, member: Member, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(member)
        if not members:
            del self._rooms[room]
