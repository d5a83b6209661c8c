"""
Stateless relay for WebRTC call signaling.

Every signaling message names its target user in `to`. The relay resolves the
target's current connection through the session directory and forwards the
payload under the outbound event name. No call state (ringing, connected,
ended) is kept here; that lives on the clients.
"""
import logging
from typing import Any, Optional

from data_models import CallLogPayload, CallLogRecord, CallSignal
from session_directory import SessionDirectory

# Inbound event -> outbound event. `offer`/`answer` are accepted as aliases.
RELAYED_EVENTS = {
    "initiate-call": "incoming-call",
    "call-accepted": "call-accepted",
    "call-rejected": "call-rejected",
    "call-offer": "call-offer",
    "offer": "call-offer",
    "call-answer": "call-answer",
    "answer": "call-answer",
    "ice-candidate": "ice-candidate",
    "end-call": "call-ended",
}


class CallSignalingRelay:
    """Directed forwarding of call-setup messages between two addressed users."""

    def __init__(self, socketio: Any, directory: SessionDirectory, store: Any = None):
        self._socketio = socketio
        self._directory = directory
        self._store = store

    def relay(self, connection_id: str, event: str, signal: CallSignal) -> bool:
        """
        Forwards a signaling message to the target user's current connection.

        Only `initiate-call` reports an unreachable target (as `call-unavailable`
        to the caller); later messages in a call are best-effort.

        Returns:
            True if the message was forwarded.
        """
        outbound = RELAYED_EVENTS[event]
        data = signal.model_dump(by_alias=True, exclude_none=True)
        if event == "end-call" and data.get("callState") == "ringing":
            # Hanging up before an answer: the callee should stop ringing.
            outbound = "call-cancelled"
        if "from" not in data:
            identity = self._directory.identity(connection_id)
            if identity is not None:
                data["from"] = identity.user_id

        target = self._directory.lookup(signal.to)
        if target is None:
            if event == "initiate-call":
                logging.info(f"Call from {data.get('from')} to {signal.to} failed: user not reachable.")
                self._socketio.emit(
                    "call-unavailable", {"to": signal.to, "reason": "User is not reachable"}, to=connection_id
                )
            return False

        self._socketio.emit(outbound, data, to=target)
        if event == "initiate-call":
            logging.info(f"Call initiated from {data.get('from')} to {signal.to} ({data.get('callType', 'audio')}).")
        return True

    def log_call(self, caller_id: str, payload: CallLogPayload) -> Optional[CallLogRecord]:
        """Persists the outcome of a finished call reported by one of its parties."""
        if self._store is None:
            return None
        record = CallLogRecord(
            caller_id=caller_id,
            receiver_id=payload.receiver_id,
            call_type=payload.call_type,
            duration=payload.duration,
            call_status=payload.call_status,
        )
        stored = self._store.add_call_log(record)
        logging.info(f"Call log saved: {caller_id} -> {payload.receiver_id} ({payload.call_status}, {payload.duration}s)")
        return stored
