"""
The in-process core of the relay.

RelayCore owns exactly one of each component (session directory, presence
tracker, room registry, message router, call relay, whiteboard relay) and
wires them to the injected collaborators: the store, the Socket.IO server,
a timer scheduler and a detached-task spawner. All of its state lives in
memory for the lifetime of the process; after a restart every user is
offline until they reconnect.

Handlers run one at a time on the event loop, and no mutation of the
directory or registry spans a suspension point, so the maps need no locks.
"""
import logging
from typing import Any, Callable, Optional

from call_relay import CallSignalingRelay
from config import INACTIVITY_TIMEOUT_SECONDS, SINGLE_SESSION_PER_USER, WHITEBOARD_DEBOUNCE_SECONDS
from data_models import AuthenticatePayload, CallLogPayload, CallLogRecord, RoomPresencePayload
from message_router import MessageRouter
from message_store import StorageError
from presence import PresenceTracker
from room_registry import RoomMembershipRegistry
from session_directory import SessionDirectory
from utils import schedule_after
from whiteboard_relay import WhiteboardRelay

SUSPENDED_REASON = (
    "Your account has been suspended due to multiple user reports. "
    "Please contact support if you believe this is an error."
)
REPLACED_SESSION_REASON = "Signed in from another session"


class RelayCore:
    def __init__(
        self,
        store: Any,
        socketio: Any,
        schedule: Callable = schedule_after,
        spawn: Optional[Callable] = None,
        audit: Any = None,
        inactivity_timeout: float = INACTIVITY_TIMEOUT_SECONDS,
        whiteboard_debounce: float = WHITEBOARD_DEBOUNCE_SECONDS,
        single_session: bool = SINGLE_SESSION_PER_USER,
    ):
        spawn = spawn or socketio.start_background_task
        self.store = store
        self.socketio = socketio
        self.audit = audit
        self.single_session = single_session

        self.directory = SessionDirectory()
        self.presence = PresenceTracker(store, socketio, schedule, spawn, inactivity_timeout)
        self.rooms = RoomMembershipRegistry(store, socketio, spawn)
        self.router = MessageRouter(store, socketio, self.directory, self.rooms, spawn)
        self.calls = CallSignalingRelay(socketio, self.directory, store)
        self.whiteboard = WhiteboardRelay(socketio, self.rooms, schedule, whiteboard_debounce)

    # --- Connection lifecycle ---

    def connect(self, connection_id: str) -> None:
        logging.info(f"Socket.IO connection established: {connection_id}")
        self._audit("Client Connected", connection_id)

    def authenticate(self, connection_id: str, payload: AuthenticatePayload) -> bool:
        """
        Binds the connection to the user and marks the user active.

        Returns:
            False if the user is suspended; the connection is then logged out.
        """
        try:
            user = self.store.get_user(payload.user_id)
        except StorageError:
            logging.exception(f"Error validating user {payload.user_id} during authentication")
            user = None

        if user is not None and user.suspended:
            logging.info(f"Suspended user {payload.user_id} attempted to connect, forcing logout")
            self._force_logout(connection_id, SUSPENDED_REASON, suspended=True)
            return False

        former = self.directory.identity(connection_id)
        if former is not None and former.user_id != payload.user_id:
            if self.directory.unbind(connection_id) is not None:
                self.presence.disconnect(former.user_id)

        orphaned = self.directory.bind(payload.user_id, connection_id, payload.username)
        if orphaned is not None and self.single_session:
            self._force_logout(orphaned, REPLACED_SESSION_REASON)

        self.presence.record_activity(payload.user_id)
        self.socketio.emit("authenticated", {"userId": payload.user_id, "username": payload.username}, to=connection_id)
        logging.info(f"User {payload.username or payload.user_id} mapped to socket {connection_id}")
        self._audit("User Authenticated", connection_id, payload.user_id, {"username": payload.username})
        return True

    def activity(self, connection_id: str) -> bool:
        """Heartbeat from a client; ignored until the connection has authenticated."""
        identity = self.directory.identity(connection_id)
        if identity is None:
            return False
        self.presence.record_activity(identity.user_id)
        return True

    def disconnect(self, connection_id: str, reason: Optional[str] = None) -> None:
        rooms = self.rooms.leave_all(connection_id)
        self.whiteboard.forget_connection(connection_id, rooms)

        identity = self.directory.identity(connection_id)
        user_id = self.directory.unbind(connection_id)
        self.directory.forget(connection_id)
        # An orphaned connection closing does not take its user offline.
        if user_id is not None:
            self.presence.disconnect(user_id)
            logging.info(f"Removed user {user_id} from active connections")

        logging.info(f"Client disconnected: {connection_id}, Reason: {reason}")
        self._audit("Client Disconnected", connection_id, identity.user_id if identity else None, {"reason": reason})

    def force_disconnect_user(self, user_id: str, reason: str = "User account deleted") -> int:
        """
        Logs a user out of every open connection, e.g. after the account was
        deleted. Cleanup happens in the regular disconnect path.

        Returns:
            The number of connections that were told to log out.
        """
        connections = self.directory.connections_of(user_id)
        for connection_id in connections:
            logging.info(f"Forcing disconnect for user {user_id} (socket: {connection_id})")
            self._force_logout(connection_id, reason)
        if not connections:
            logging.info(f"No active connections found for user {user_id}")
        return len(connections)

    # --- Rooms ---

    def join_room(self, connection_id: str, payload: RoomPresencePayload) -> bool:
        user_id, username = self._attribute(connection_id, payload.user_id, payload.username)
        return self.rooms.join(connection_id, payload.room_id, user_id, username)

    def leave_room(self, connection_id: str, payload: RoomPresencePayload) -> bool:
        user_id, username = self._attribute(connection_id, payload.user_id, payload.username)
        left = self.rooms.leave(connection_id, payload.room_id, user_id, username)
        if left:
            self.whiteboard.drop_if_empty(payload.room_id)
        return left

    # --- Calls ---

    def log_call(self, connection_id: str, payload: CallLogPayload) -> Optional[CallLogRecord]:
        """Persists a finished call reported by the connection's user. Returns None if unauthenticated."""
        caller_id = self.resolve_user(connection_id)
        if caller_id is None:
            return None
        record = self.calls.log_call(caller_id, payload)
        self._audit("Call Logged", connection_id, caller_id, payload.model_dump())
        return record

    def resolve_user(self, connection_id: str, claimed: Optional[str] = None) -> Optional[str]:
        """The user a request speaks for: the id it names, else the connection's identity."""
        return self._attribute(connection_id, claimed, None)[0]

    def stats(self) -> dict[str, int]:
        return {
            "onlineUsers": len(self.presence.online_user_ids()),
            "connections": self.directory.connection_count(),
            "rooms": self.rooms.room_count(),
        }

    def shutdown(self) -> None:
        self.presence.shutdown()

    # --- Helpers ---

    def _attribute(self, connection_id: str, user_id: Optional[str], username: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        identity = self.directory.identity(connection_id)
        if identity is not None:
            user_id = user_id or identity.user_id
            username = username or identity.username
        return user_id, username

    def _force_logout(self, connection_id: str, reason: str, suspended: bool = False) -> None:
        notice = {"reason": reason}
        if suspended:
            notice["suspended"] = True
        self.socketio.emit("force_logout", notice, to=connection_id)
        identity = self.directory.identity(connection_id)
        self._audit("Force Logout", connection_id, identity.user_id if identity else None, notice)
        try:
            self.socketio.server.disconnect(connection_id, namespace="/")
        except Exception:
            logging.exception(f"Could not close connection {connection_id} after force_logout")

    def _audit(self, event: str, connection_id: str, user_id: Optional[str] = None, details: Any = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log_event(event, connection_id=connection_id, user_id=user_id, details=details)
        except OSError:
            logging.exception(f"Could not write audit event '{event}'")
