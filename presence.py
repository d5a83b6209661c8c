"""
Derives online/offline presence from connection lifecycle and inactivity.

Each user is either ONLINE (an ActivityRecord with a pending inactivity timer
exists) or OFFLINE (no record). Activity is a heartbeat: every `activity`
event, and every authenticate, rearms the timer. When the timer fires, or the
user's connection closes, the user goes OFFLINE.

Every transition is persisted against the user's profile and broadcast to all
connections as `user_status_changed`. Both side effects are detached: they
are logged on failure and never hold up the in-memory transition.
"""
import itertools
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from config import INACTIVITY_TIMEOUT_SECONDS
from data_models import UserStatus
from session_models import ActivityRecord
from utils import schedule_after, spawn_detached, utc_now


class PresenceTracker:
    """Per-user two-state presence machine with a resettable inactivity timer."""

    def __init__(
        self,
        store: Any,
        socketio: Any,
        schedule: Callable = schedule_after,
        spawn: Optional[Callable] = None,
        inactivity_timeout: float = INACTIVITY_TIMEOUT_SECONDS,
    ):
        """
        Args:
            store: The ChatStore that persists user status.
            socketio: The SocketIO server used to broadcast status changes.
            schedule: schedule(delay, func, *args) -> handle with cancel().
            spawn: Runs detached work; defaults to socketio.start_background_task.
            inactivity_timeout: Seconds without activity before a user goes offline.
        """
        self._store = store
        self._socketio = socketio
        self._schedule = schedule
        self._spawn = spawn or socketio.start_background_task
        self.inactivity_timeout = inactivity_timeout
        self._records: dict[str, ActivityRecord] = {}
        # Unique across users and across offline/online cycles.
        self._generations = itertools.count(1)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._records

    def status(self, user_id: str) -> UserStatus:
        return UserStatus.ONLINE if user_id in self._records else UserStatus.OFFLINE

    def online_user_ids(self) -> list[str]:
        return list(self._records)

    def last_activity(self, user_id: str) -> Optional[datetime]:
        record = self._records.get(user_id)
        return record.last_activity if record else None

    def record_activity(self, user_id: str) -> None:
        """Marks the user online if needed and restarts the inactivity window."""
        came_online = user_id not in self._records
        self._rearm(user_id)
        if came_online:
            logging.info(f"User {user_id} is now online.")
            self._publish(user_id, UserStatus.ONLINE)

    def disconnect(self, user_id: str) -> bool:
        """
        Immediately marks the user offline.

        Returns:
            True if the user was online; False (and nothing is published) otherwise.
        """
        record = self._records.pop(user_id, None)
        if record is None:
            return False
        if record.timer is not None:
            record.timer.cancel()
        logging.info(f"User {user_id} disconnected; marking offline.")
        self._publish(user_id, UserStatus.OFFLINE)
        return True

    def shutdown(self) -> None:
        """Cancels every pending timer without publishing anything."""
        for record in self._records.values():
            if record.timer is not None:
                record.timer.cancel()
        self._records.clear()

    def _rearm(self, user_id: str) -> None:
        # Cancel-then-schedule in one synchronous step: never two live timers per user.
        record = self._records.get(user_id)
        if record is not None and record.timer is not None:
            record.timer.cancel()
        generation = next(self._generations)
        timer = self._schedule(self.inactivity_timeout, self._expire, user_id, generation)
        self._records[user_id] = ActivityRecord(
            user_id=user_id, last_activity=utc_now(), generation=generation, timer=timer
        )

    def _expire(self, user_id: str, generation: int) -> None:
        record = self._records.get(user_id)
        if record is None or record.generation != generation:
            # Stale timer: rearmed or discarded after it was scheduled.
            return
        del self._records[user_id]
        logging.info(f"User {user_id} marked offline after {self.inactivity_timeout}s of inactivity.")
        self._publish(user_id, UserStatus.OFFLINE)

    def _publish(self, user_id: str, status: UserStatus) -> None:
        at = utc_now()
        spawn_detached(self._spawn, self._persist_status, user_id, status, at)
        spawn_detached(self._spawn, self._broadcast_status, user_id, status, at)

    def _persist_status(self, user_id: str, status: UserStatus, at: datetime) -> None:
        self._store.set_user_status(user_id, status, at)
        logging.info(f"User {user_id} status updated to: {status.value}")

    def _broadcast_status(self, user_id: str, status: UserStatus, at: datetime) -> None:
        self._socketio.emit(
            "user_status_changed",
            {"userId": user_id, "status": status.value, "lastActiveAt": at.isoformat()},
        )
