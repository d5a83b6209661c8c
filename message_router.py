"""
Routes chat traffic between connections.

Both delivery modes follow one rule: a message is persisted before anyone is
told about it. If the store raises, the StorageError propagates to the caller
(which reports it to the sender only) and nothing is delivered, so a message
a client has seen is always retrievable through history.

Room messages go to every connection joined to the room, sender included, and
a single content-free `room_message_notification` goes to everyone so unread
badges can update without shipping message bodies to non-viewers. Private
messages go to the sender's connection and, if bound, the receiver's current
connection. An offline receiver is not an error; the message waits in history.
"""
import logging
from typing import Any, Callable, Optional

from data_models import (
    MessageRecord,
    PrivateHistoryRequest,
    PrivateMessagePayload,
    RoomHistoryRequest,
    RoomMessagePayload,
    TypingPayload,
)
from session_directory import SessionDirectory
from room_registry import RoomMembershipRegistry
from utils import spawn_detached


class MessageRouter:
    """Persists chat messages and delivers them through the directory and registry."""

    def __init__(
        self,
        store: Any,
        socketio: Any,
        directory: SessionDirectory,
        registry: RoomMembershipRegistry,
        spawn: Optional[Callable] = None,
    ):
        self._store = store
        self._socketio = socketio
        self._directory = directory
        self._registry = registry
        self._spawn = spawn or socketio.start_background_task

    # --- Room traffic ---

    def send_room_message(self, connection_id: str, payload: RoomMessagePayload) -> MessageRecord:
        record = MessageRecord(
            sender_id=payload.sender_id,
            sender_name=payload.sender_name,
            content=payload.content,
            message_type=payload.message_type,
            room_id=payload.room_id,
            is_private=False,
        )
        stored = self._store.add_message(record)

        message = stored.to_wire()
        for member in self._registry.members(payload.room_id):
            self._socketio.emit("room_message", message, to=member)

        notification = {
            "roomId": stored.room_id,
            "messageId": stored.message_id,
            "senderId": stored.sender_id,
            "senderName": stored.sender_name,
            "timestamp": message["timestamp"],
        }
        spawn_detached(self._spawn, self._socketio.emit, "room_message_notification", notification)
        logging.info(f"Message sent in room {payload.room_id} by {payload.sender_name or payload.sender_id}")
        return stored

    def get_room_messages(self, connection_id: str, request: RoomHistoryRequest) -> list[dict]:
        newest_first = self._store.recent_room_messages(request.room_id, request.limit)
        messages = [m.to_wire() for m in reversed(newest_first)]
        self._socketio.emit("room_messages", {"roomId": request.room_id, "messages": messages}, to=connection_id)
        return messages

    # --- Private traffic ---

    def send_private_message(self, connection_id: str, payload: PrivateMessagePayload) -> MessageRecord:
        record = MessageRecord(
            sender_id=payload.sender_id,
            sender_name=payload.sender_name,
            content=payload.content,
            message_type=payload.message_type,
            receiver_id=payload.receiver_id,
            is_private=True,
        )
        stored = self._store.add_message(record)
        # The summary feeds chat lists; it is written before any delivery attempt.
        chat = self._store.upsert_private_chat(
            payload.sender_id, payload.receiver_id, stored.message_id, stored.timestamp
        )

        message = {**stored.to_wire(), "chatId": chat.chat_id}
        recipients = [connection_id]
        receiver_connection = self._directory.lookup(payload.receiver_id)
        if receiver_connection is not None and receiver_connection != connection_id:
            recipients.append(receiver_connection)
        for recipient in recipients:
            self._socketio.emit("private_message", message, to=recipient)

        if receiver_connection is None:
            logging.info(f"Private message from {payload.sender_id} stored for offline user {payload.receiver_id}")
        else:
            logging.info(f"Private message sent from {payload.sender_id} to {payload.receiver_id}")
        return stored

    def get_private_messages(self, connection_id: str, user_id: str, request: PrivateHistoryRequest) -> list[dict]:
        newest_first = self._store.recent_private_messages(user_id, request.other_user_id, request.limit)
        messages = [m.to_wire() for m in reversed(newest_first)]
        self._socketio.emit(
            "private_messages", {"otherUserId": request.other_user_id, "messages": messages}, to=connection_id
        )
        return messages

    # --- Read state ---

    def mark_as_read(self, message_id: str) -> bool:
        updated = self._store.mark_message_read(message_id)
        if updated:
            logging.info(f"Message {message_id} marked as read")
        return updated

    def mark_chat_as_read(self, connection_id: str, user_id: str, other_user_id: str) -> int:
        """
        Marks every message other_user_id sent to user_id as read.

        The caller gets `messages_marked_read` with the count; the other
        participant, if online, gets a best-effort `chat_read_status` receipt.
        """
        count = self._store.mark_chat_read(user_id, other_user_id)
        self._socketio.emit("messages_marked_read", {"otherUserId": other_user_id, "count": count}, to=connection_id)

        peer = self._directory.lookup(other_user_id)
        if peer is not None and peer != connection_id:
            receipt = {"readerId": user_id, "otherUserId": other_user_id, "count": count}
            spawn_detached(self._spawn, self._socketio.emit, "chat_read_status", receipt, to=peer)
        return count

    # --- Typing indicators ---

    def relay_typing(self, connection_id: str, payload: TypingPayload, stopped: bool = False) -> int:
        """
        Forwards an ephemeral typing indicator. Nothing is persisted or retried.

        Returns:
            The number of connections the indicator was sent to.
        """
        event = "user_stop_typing" if stopped else "user_typing"
        notice = {"userId": payload.user_id}
        if payload.username and not stopped:
            notice["username"] = payload.username

        if payload.is_direct:
            target = self._directory.lookup(payload.target_id)
            recipients = {target} - {None, connection_id}
            notice["isPrivate"] = True
        else:
            recipients = self._registry.members(payload.room_id) - {connection_id}
            notice["roomId"] = payload.room_id

        for recipient in recipients:
            try:
                self._socketio.emit(event, notice, to=recipient)
            except Exception:
                logging.exception(f"Dropped {event} for {recipient}.")
        return len(recipients)
