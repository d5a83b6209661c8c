"""
Tracks which live connections are joined to which chat rooms.

This is transient, broadcast-scoping state, distinct from any persisted room
participant list. An explicit `leave_room` is treated as a read signal and
records a last-seen timestamp for unread counts; a disconnect removes the
connection from its rooms without recording anything, since closing a tab is
not evidence that the user read the room.
"""
import logging
from typing import Any, Callable, Optional

from utils import spawn_detached, utc_now


class RoomMembershipRegistry:
    """Room <-> connection membership with best-effort arrival/departure notices."""

    def __init__(self, store: Any, socketio: Any, spawn: Optional[Callable] = None):
        self._store = store
        self._socketio = socketio
        self._spawn = spawn or socketio.start_background_task
        self._members: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}

    def join(self, connection_id: str, room_id: str, user_id: Optional[str] = None, username: Optional[str] = None) -> bool:
        """
        Adds the connection to the room and tells the other members.

        Returns:
            False if the connection was already a member (no notice is sent).
        """
        members = self._members.setdefault(room_id, set())
        if connection_id in members:
            return False
        members.add(connection_id)
        self._rooms.setdefault(connection_id, set()).add(room_id)
        logging.info(f"{username or user_id or connection_id} joined room: {room_id}")

        others = members - {connection_id}
        if others:
            notice = {"userId": user_id, "username": username, "roomId": room_id, "timestamp": utc_now().isoformat()}
            spawn_detached(self._spawn, self._notify, "user_joined", notice, others)
        return True

    def leave(self, connection_id: str, room_id: str, user_id: Optional[str] = None, username: Optional[str] = None) -> bool:
        """
        Removes the connection from the room, tells the remaining members and
        records the user's last visit to the room.

        Returns:
            False if the connection was not a member.
        """
        if not self._discard(connection_id, room_id):
            return False
        logging.info(f"{username or user_id or connection_id} left room: {room_id}")

        at = utc_now()
        remaining = self.members(room_id)
        if remaining:
            notice = {"userId": user_id, "username": username, "roomId": room_id, "timestamp": at.isoformat()}
            spawn_detached(self._spawn, self._notify, "user_left", notice, remaining)
        if user_id:
            spawn_detached(self._spawn, self._store.record_room_visit, user_id, room_id, at)
        return True

    def leave_all(self, connection_id: str) -> list[str]:
        """Removes the connection from every room it joined. Returns those rooms."""
        rooms = sorted(self._rooms.pop(connection_id, set()))
        for room_id in rooms:
            members = self._members.get(room_id)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._members[room_id]
        return rooms

    def members(self, room_id: str) -> set[str]:
        return set(self._members.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> set[str]:
        return set(self._rooms.get(connection_id, ()))

    def room_count(self) -> int:
        return len(self._members)

    def is_member(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self._members.get(room_id, ())

    def _discard(self, connection_id: str, room_id: str) -> bool:
        members = self._members.get(room_id)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._members[room_id]
        rooms = self._rooms.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._rooms[connection_id]
        return True

    def _notify(self, event: str, notice: dict, recipients: set[str]) -> None:
        for connection_id in recipients:
            self._socketio.emit(event, notice, to=connection_id)
