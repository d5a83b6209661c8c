"""
Client-side replica of a room's shared whiteboard.

The replica is what a participant embeds next to its canvas: local edits are
debounced and sent as full snapshots, remote snapshots replace the local
elements wholesale. Applying a remote snapshot must not look like a local edit,
otherwise every receiver would echo it straight back; the replica suppresses
its own change hook for the duration of the apply.
"""
import json
import logging
from contextlib import contextmanager
from typing import Any, Callable, Optional

from config import WHITEBOARD_DEBOUNCE_SECONDS
from data_models import WhiteboardSnapshot
from utils import schedule_after

# View settings each participant keeps for themselves; never taken from peers.
LOCAL_VIEW_PREFERENCES = ("viewBackgroundColor", "currentItemFontFamily")


class WhiteboardReplica:
    def __init__(
        self,
        room_id: str,
        emit: Callable[[str, dict], Any],
        schedule: Callable = schedule_after,
        debounce: float = WHITEBOARD_DEBOUNCE_SECONDS,
    ):
        """
        Args:
            room_id: The room whose whiteboard this replica mirrors.
            emit: Sends an event to the server, e.g. a python-socketio client's emit.
            schedule: schedule(delay, func, *args) -> handle with cancel().
            debounce: Seconds of quiet before a local change is sent.
        """
        self.room_id = room_id
        self.elements: list[dict[str, Any]] = []
        self.app_state: dict[str, Any] = {}
        self._emit = emit
        self._schedule = schedule
        self.debounce = debounce
        self._timer: Optional[Any] = None
        self._last_sent = self._serialize([])
        self._applying_remote = False
        self._listeners: list[Callable[[list, dict], None]] = []

    def on_change(self, listener: Callable[[list, dict], None]) -> None:
        """Registers a callback invoked whenever the replica's scene changes."""
        self._listeners.append(listener)

    def local_change(self, elements: list[dict[str, Any]], app_state: Optional[dict[str, Any]] = None) -> None:
        """Records a local edit and (re)starts the debounce window."""
        if self._applying_remote:
            return
        self.elements = list(elements)
        if app_state is not None:
            self.app_state = dict(app_state)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._schedule(self.debounce, self._flush)

    def apply_remote(self, data: dict[str, Any]) -> None:
        """Replaces the scene with a peer's snapshot, keeping local view preferences."""
        snapshot = WhiteboardSnapshot.model_validate(data)
        preserved = {key: self.app_state[key] for key in LOCAL_VIEW_PREFERENCES if key in self.app_state}
        self._replace(snapshot.elements, {**snapshot.app_state, **preserved})

    def load_state(self, data: dict[str, Any]) -> None:
        """Adopts the initial room state answered to a `whiteboard-request-state`."""
        snapshot = WhiteboardSnapshot.model_validate(data)
        self._replace(snapshot.elements, snapshot.app_state)

    def request_state(self) -> None:
        self._emit("whiteboard-request-state", {"roomId": self.room_id})

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @contextmanager
    def _suppressing_local_changes(self):
        self._applying_remote = True
        try:
            yield
        finally:
            self._applying_remote = False

    def _replace(self, elements: list[dict[str, Any]], app_state: dict[str, Any]) -> None:
        with self._suppressing_local_changes():
            self.elements = list(elements)
            self.app_state = app_state
            # Already in sync with the room; nothing of ours to send.
            self._last_sent = self._serialize(self.elements)
            for listener in self._listeners:
                try:
                    listener(self.elements, self.app_state)
                except Exception:
                    logging.exception("Whiteboard change listener failed.")

    def _flush(self) -> None:
        self._timer = None
        serialized = self._serialize(self.elements)
        if serialized == self._last_sent:
            return
        self._last_sent = serialized
        self._emit(
            "whiteboard-update",
            {"roomId": self.room_id, "elements": self.elements, "appState": self.app_state},
        )

    @staticmethod
    def _serialize(elements: list[dict[str, Any]]) -> str:
        return json.dumps(elements, sort_keys=True, default=str)
