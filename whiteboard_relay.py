"""
Best-effort relay of shared whiteboard state between the members of a room.

Updates are complete canvas snapshots, not operations, and convergence is
last-writer-wins: the newest snapshot replaces whatever came before. Rapid
updates from one connection are coalesced with a short clear-and-reset
debounce before being relayed to the other members.

The relay keeps the latest snapshot of each occupied room so late joiners can
be served without a round trip; when no snapshot is cached it asks the other
members and forwards the first answer. Nothing is durable: once a room has no
members its whiteboard is gone.
"""
import logging
from typing import Any, Callable, Optional

from config import WHITEBOARD_DEBOUNCE_SECONDS
from data_models import WhiteboardSnapshot, WhiteboardStateResponse, WhiteboardUpdatePayload
from room_registry import RoomMembershipRegistry
from utils import schedule_after


class _PendingUpdate:
    __slots__ = ("snapshot", "timer")

    def __init__(self, snapshot: WhiteboardSnapshot, timer: Any):
        self.snapshot = snapshot
        self.timer = timer


class WhiteboardRelay:
    def __init__(
        self,
        socketio: Any,
        registry: RoomMembershipRegistry,
        schedule: Callable = schedule_after,
        debounce: float = WHITEBOARD_DEBOUNCE_SECONDS,
    ):
        self._socketio = socketio
        self._registry = registry
        self._schedule = schedule
        self.debounce = debounce
        self._snapshots: dict[str, WhiteboardSnapshot] = {}
        # (connection id, room id) -> the newest snapshot not yet relayed
        self._pending: dict[tuple[str, str], _PendingUpdate] = {}
        # room id -> connections waiting for a peer to answer a state request
        self._awaiting_state: dict[str, set[str]] = {}

    def snapshot(self, room_id: str) -> Optional[WhiteboardSnapshot]:
        return self._snapshots.get(room_id)

    def update(self, connection_id: str, payload: WhiteboardUpdatePayload) -> bool:
        """
        Caches the snapshot and (re)starts the debounce window of this connection.

        Returns:
            False if the connection is not a member of the room; nothing is kept.
        """
        if not self._registry.is_member(connection_id, payload.room_id):
            logging.warning(f"Ignored whiteboard update for room {payload.room_id} from non-member {connection_id}.")
            return False
        snapshot = WhiteboardSnapshot(room_id=payload.room_id, elements=payload.elements, app_state=payload.app_state)
        self._snapshots[payload.room_id] = snapshot

        key = (connection_id, payload.room_id)
        pending = self._pending.pop(key, None)
        if pending is not None:
            pending.timer.cancel()
        timer = self._schedule(self.debounce, self._flush, key)
        self._pending[key] = _PendingUpdate(snapshot, timer)
        return True

    def request_state(self, connection_id: str, room_id: str) -> bool:
        """
        Sends the requester the current whiteboard of the room.

        Returns:
            True if the state was sent immediately (cached, or the room has no
            one else to ask); False if the other members were asked for it.
        """
        cached = self._snapshots.get(room_id)
        if cached is not None:
            self._socketio.emit("whiteboard-state", cached.to_wire(), to=connection_id)
            return True

        peers = self._registry.members(room_id) - {connection_id}
        if not peers:
            empty = WhiteboardSnapshot(room_id=room_id)
            self._socketio.emit("whiteboard-state", empty.to_wire(), to=connection_id)
            return True

        self._awaiting_state.setdefault(room_id, set()).add(connection_id)
        for peer in peers:
            self._socketio.emit("whiteboard-request-state", {"roomId": room_id, "requesterId": connection_id}, to=peer)
        return False

    def respond_state(self, connection_id: str, response: WhiteboardStateResponse) -> bool:
        """Forwards a peer's answer to a pending state request; later answers are dropped."""
        if not self._registry.is_member(connection_id, response.room_id):
            return False
        waiting = self._awaiting_state.get(response.room_id)
        if not waiting or response.requester_id not in waiting:
            return False
        waiting.discard(response.requester_id)
        if not waiting:
            del self._awaiting_state[response.room_id]

        snapshot = WhiteboardSnapshot(room_id=response.room_id, elements=response.elements, app_state=response.app_state)
        # A local update that raced the request is newer; keep it.
        self._snapshots.setdefault(response.room_id, snapshot)
        self._socketio.emit("whiteboard-state", snapshot.to_wire(), to=response.requester_id)
        return True

    def forget_connection(self, connection_id: str, rooms: list[str]) -> None:
        """
        Called once a connection has left its rooms: relays anything it still
        had pending and drops the whiteboards of rooms that are now empty.
        """
        for key in [k for k in self._pending if k[0] == connection_id]:
            pending = self._pending.get(key)
            if pending is not None:
                pending.timer.cancel()
                self._flush(key)
        for waiting in self._awaiting_state.values():
            waiting.discard(connection_id)
        for room_id in rooms:
            self.drop_if_empty(room_id)

    def drop_if_empty(self, room_id: str) -> bool:
        if self._registry.members(room_id):
            return False
        dropped = self._snapshots.pop(room_id, None) is not None
        self._awaiting_state.pop(room_id, None)
        if dropped:
            logging.info(f"Whiteboard of room {room_id} discarded; no members left.")
        return dropped

    def _flush(self, key: tuple[str, str]) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        connection_id, room_id = key
        data = pending.snapshot.to_wire()
        for member in self._registry.members(room_id) - {connection_id}:
            try:
                self._socketio.emit("whiteboard-update", data, to=member)
            except Exception:
                logging.exception(f"Dropped whiteboard update for {member}.")
