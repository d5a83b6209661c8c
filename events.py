"""
Handles all SocketIO event logic for the application.

This module is the boundary between the transport and the relay core: every
inbound payload is validated here, and malformed payloads or store failures
are answered with an `error` event to the offending connection only. It is
designed to be registered by the main parlor.py script.
"""

import logging
from typing import Any, Callable, Optional, Type

from flask import request
from flask_socketio import SocketIO
from pydantic import BaseModel, ValidationError

from call_relay import RELAYED_EVENTS
from data_models import (
    AuthenticatePayload,
    CallLogPayload,
    CallSignal,
    MarkAsReadPayload,
    MarkChatAsReadPayload,
    PrivateHistoryRequest,
    PrivateMessagePayload,
    RoomHistoryRequest,
    RoomMessagePayload,
    RoomPresencePayload,
    TypingPayload,
    WhiteboardStateRequest,
    WhiteboardStateResponse,
    WhiteboardUpdatePayload,
)
from message_store import StorageError
from relay_core import RelayCore
from utils import schedule_after


def register_events(
    socketio: SocketIO,
    store: Any,
    schedule: Callable = schedule_after,
    spawn: Optional[Callable] = None,
    **options: Any,
) -> RelayCore:
    """
    Registers all SocketIO event handlers with the main application.

    Args:
        socketio: The SocketIO server the handlers are attached to.
        store: The ChatStore (or any object with the same methods).
        schedule: Timer factory, schedule(delay, func, *args) -> handle with cancel().
        spawn: Runs detached work; defaults to socketio.start_background_task.
        **options: Passed through to RelayCore (audit, inactivity_timeout, ...).

    Returns:
        The RelayCore instance that owns all connection state.
    """
    core = RelayCore(store, socketio, schedule=schedule, spawn=spawn, **options)

    def send_error(session_id: str, event: str, message: str) -> None:
        socketio.emit("error", {"event": event, "message": message}, to=session_id)

    def parse(model: Type[BaseModel], data: Any, event: str) -> Optional[Any]:
        """Validates an inbound payload; reports a malformed one to the sender and returns None."""
        session_id = request.sid
        try:
            return model.model_validate(data if data is not None else {})
        except ValidationError as e:
            logging.warning(f"Rejected malformed '{event}' payload from {session_id}: {e.error_count()} error(s)")
            send_error(session_id, event, f"Invalid {event} payload.")
            return None

    # --- Connection lifecycle ---

    @socketio.on("connect")
    def handle_connect(auth=None) -> None:
        core.connect(request.sid)

    @socketio.on("disconnect")
    def handle_disconnect(reason=None) -> None:
        """Cleans up every trace of the connection: rooms, identity and presence."""
        core.disconnect(request.sid, reason)

    @socketio.on("authenticate")
    def handle_authenticate(data=None) -> None:
        if payload := parse(AuthenticatePayload, data, "authenticate"):
            core.authenticate(request.sid, payload)

    @socketio.on("activity")
    def handle_activity(data=None) -> None:
        core.activity(request.sid)

    # --- Rooms ---

    @socketio.on("join_room")
    def handle_join_room(data=None) -> None:
        if payload := parse(RoomPresencePayload, data, "join_room"):
            core.join_room(request.sid, payload)

    @socketio.on("leave_room")
    def handle_leave_room(data=None) -> None:
        if payload := parse(RoomPresencePayload, data, "leave_room"):
            core.leave_room(request.sid, payload)

    # --- Messages ---

    @socketio.on("send_room_message")
    def handle_send_room_message(data=None) -> None:
        """Persists a room message, then delivers it to the room (sender included)."""
        session_id = request.sid
        payload = parse(RoomMessagePayload, data, "send_room_message")
        if payload is None:
            return
        try:
            core.router.send_room_message(session_id, payload)
        except StorageError:
            logging.exception(f"Error sending room message to {payload.room_id}")
            send_error(session_id, "send_room_message", "Failed to send message")

    @socketio.on("send_private_message")
    def handle_send_private_message(data=None) -> None:
        session_id = request.sid
        payload = parse(PrivateMessagePayload, data, "send_private_message")
        if payload is None:
            return
        try:
            core.router.send_private_message(session_id, payload)
        except StorageError:
            logging.exception(f"Error sending private message to {payload.receiver_id}")
            send_error(session_id, "send_private_message", "Failed to send message")

    @socketio.on("get_room_messages")
    def handle_get_room_messages(data=None) -> None:
        session_id = request.sid
        payload = parse(RoomHistoryRequest, data, "get_room_messages")
        if payload is None:
            return
        try:
            core.router.get_room_messages(session_id, payload)
        except StorageError:
            logging.exception(f"Error loading history of room {payload.room_id}")
            send_error(session_id, "get_room_messages", "Failed to load messages")

    @socketio.on("get_private_messages")
    def handle_get_private_messages(data=None) -> None:
        session_id = request.sid
        payload = parse(PrivateHistoryRequest, data, "get_private_messages")
        if payload is None:
            return
        user_id = core.resolve_user(session_id, payload.user_id)
        if user_id is None:
            send_error(session_id, "get_private_messages", "Not authenticated")
            return
        try:
            core.router.get_private_messages(session_id, user_id, payload)
        except StorageError:
            logging.exception(f"Error loading private history of {user_id} with {payload.other_user_id}")
            send_error(session_id, "get_private_messages", "Failed to load messages")

    @socketio.on("mark_as_read")
    def handle_mark_as_read(data=None) -> None:
        session_id = request.sid
        payload = parse(MarkAsReadPayload, data, "mark_as_read")
        if payload is None:
            return
        try:
            core.router.mark_as_read(payload.message_id)
        except StorageError:
            logging.exception(f"Error marking message {payload.message_id} as read")
            send_error(session_id, "mark_as_read", "Failed to mark message as read")

    @socketio.on("mark_chat_as_read")
    def handle_mark_chat_as_read(data=None) -> None:
        session_id = request.sid
        payload = parse(MarkChatAsReadPayload, data, "mark_chat_as_read")
        if payload is None:
            return
        user_id = core.resolve_user(session_id, payload.user_id)
        if user_id is None:
            send_error(session_id, "mark_chat_as_read", "Not authenticated")
            return
        try:
            core.router.mark_chat_as_read(session_id, user_id, payload.other_user_id)
        except StorageError:
            logging.exception(f"Error marking chat of {user_id} with {payload.other_user_id} as read")
            send_error(session_id, "mark_chat_as_read", "Failed to mark messages as read")

    # --- Typing indicators ---

    def relay_typing(data: Any, event: str, stopped: bool) -> None:
        session_id = request.sid
        payload = parse(TypingPayload, data, event)
        if payload is None:
            return
        if payload.user_id is None:
            payload.user_id = core.resolve_user(session_id)
        core.router.relay_typing(session_id, payload, stopped=stopped)

    @socketio.on("typing")
    def handle_typing(data=None) -> None:
        relay_typing(data, "typing", stopped=False)

    @socketio.on("stop_typing")
    def handle_stop_typing(data=None) -> None:
        relay_typing(data, "stop_typing", stopped=True)

    # --- Call signaling ---

    def call_signal_handler(event: str) -> Callable:
        def handle_call_signal(data=None) -> None:
            if signal := parse(CallSignal, data, event):
                core.calls.relay(request.sid, event, signal)

        handle_call_signal.__name__ = f"handle_{event.replace('-', '_')}"
        return handle_call_signal

    for event_name in RELAYED_EVENTS:
        socketio.on(event_name)(call_signal_handler(event_name))

    @socketio.on("call-ended-log")
    def handle_call_ended_log(data=None) -> None:
        """Persists the outcome of a call, reported by the party that hung up."""
        session_id = request.sid
        payload = parse(CallLogPayload, data, "call-ended-log")
        if payload is None:
            return
        if core.resolve_user(session_id) is None:
            send_error(session_id, "call-ended-log", "Not authenticated")
            return
        try:
            core.log_call(session_id, payload)
        except StorageError:
            logging.exception(f"Error saving call log for {session_id}")
            send_error(session_id, "call-ended-log", "Failed to save call log")

    # --- Whiteboard ---

    @socketio.on("whiteboard-update")
    def handle_whiteboard_update(data=None) -> None:
        if payload := parse(WhiteboardUpdatePayload, data, "whiteboard-update"):
            core.whiteboard.update(request.sid, payload)

    @socketio.on("whiteboard-request-state")
    def handle_whiteboard_request_state(data=None) -> None:
        if payload := parse(WhiteboardStateRequest, data, "whiteboard-request-state"):
            core.whiteboard.request_state(request.sid, payload.room_id)

    @socketio.on("whiteboard-state-response")
    def handle_whiteboard_state_response(data=None) -> None:
        if payload := parse(WhiteboardStateResponse, data, "whiteboard-state-response"):
            core.whiteboard.respond_state(request.sid, payload)

    return core
