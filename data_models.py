"""
Defines the core data structures for the relay using Pydantic.

Inbound Socket.IO payloads are validated against these models before any
component sees them, and the durable records handed to and from the store are
expressed with the same models. Clients speak camelCase on the wire, so every
model carries a camelCase alias generator while still accepting snake_case
names from Python callers.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from config import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT
from utils import utc_now


class WireModel(BaseModel):
    """Base for every model that crosses the Socket.IO boundary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serializes the model into a JSON-safe, camelCase dictionary for emitting."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UserStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


# --- Inbound payloads ---


class AuthenticatePayload(WireModel):
    user_id: str = Field(..., min_length=1)
    username: str = ""


class RoomPresencePayload(WireModel):
    """Payload of both `join_room` and `leave_room`."""

    room_id: str = Field(..., min_length=1)
    # Falls back to the identity bound to the connection when omitted.
    user_id: Optional[str] = None
    username: Optional[str] = None


class RoomMessagePayload(WireModel):
    room_id: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    sender_name: str = ""
    content: str = Field(..., min_length=1)
    message_type: str = "text"


class PrivateMessagePayload(WireModel):
    receiver_id: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    sender_name: str = ""
    content: str = Field(..., min_length=1)
    message_type: str = "text"


class TypingPayload(WireModel):
    """
    Payload of `typing` and `stop_typing`.

    A typing indicator is addressed either to a room or, for private chats, to
    a single user. At least one of the two targets must be present.
    """

    room_id: Optional[str] = None
    target_id: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    is_private: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "TypingPayload":
        if not self.room_id and not self.target_id:
            raise ValueError("Either roomId or targetId is required.")
        return self

    @property
    def is_direct(self) -> bool:
        return bool(self.target_id) and (self.is_private or not self.room_id)


class MarkAsReadPayload(WireModel):
    message_id: str = Field(..., min_length=1)


class MarkChatAsReadPayload(WireModel):
    user_id: Optional[str] = None
    other_user_id: str = Field(..., min_length=1)


class RoomHistoryRequest(WireModel):
    room_id: str = Field(..., min_length=1)
    limit: int = Field(DEFAULT_HISTORY_LIMIT, ge=1)

    @field_validator("limit")
    @classmethod
    def cap_limit(cls, value: int) -> int:
        # Oversized requests are served, capped at the maximum page.
        return min(value, MAX_HISTORY_LIMIT)


class PrivateHistoryRequest(WireModel):
    user_id: Optional[str] = None
    other_user_id: str = Field(..., min_length=1)
    limit: int = Field(DEFAULT_HISTORY_LIMIT, ge=1)

    @field_validator("limit")
    @classmethod
    def cap_limit(cls, value: int) -> int:
        return min(value, MAX_HISTORY_LIMIT)


class CallSignal(WireModel):
    """
    A WebRTC signaling message. Only the target is interpreted; every other
    field (offer, answer, candidate, callType, ...) is relayed untouched.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    to: str = Field(..., min_length=1)


class CallLogPayload(WireModel):
    receiver_id: str = Field(..., min_length=1)
    call_type: Literal["audio", "video"] = "audio"
    duration: int = Field(0, ge=0)
    call_status: Literal["completed", "missed", "cancelled", "rejected"] = "completed"


class WhiteboardUpdatePayload(WireModel):
    room_id: str = Field(..., min_length=1)
    elements: list[dict[str, Any]] = Field(default_factory=list)
    app_state: dict[str, Any] = Field(default_factory=dict)


class WhiteboardStateRequest(WireModel):
    room_id: str = Field(..., min_length=1)


class WhiteboardStateResponse(WireModel):
    room_id: str = Field(..., min_length=1)
    requester_id: str = Field(..., min_length=1)
    elements: list[dict[str, Any]] = Field(default_factory=list)
    app_state: dict[str, Any] = Field(default_factory=dict)


# --- Records ---


class MessageRecord(WireModel):
    """A chat message as persisted by the store and delivered to clients."""

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sender_id: str
    sender_name: str = ""
    content: str
    message_type: str = "text"
    # Exactly one of room_id / receiver_id is set.
    room_id: Optional[str] = None
    receiver_id: Optional[str] = None
    is_private: bool = False
    is_read: bool = False
    timestamp: datetime = Field(default_factory=utc_now)


class PrivateChatRecord(WireModel):
    """Summary of the conversation between two users, read by chat-list UIs."""

    chat_id: str
    participants: tuple[str, str]
    last_message_id: str
    last_message_at: datetime
    created_at: datetime
    is_active: bool = True


class UserRecord(WireModel):
    user_id: str
    username: Optional[str] = None
    status: UserStatus = UserStatus.OFFLINE
    last_active_at: Optional[datetime] = None
    suspended: bool = False


class CallLogRecord(WireModel):
    call_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    caller_id: str
    receiver_id: str
    call_type: str = "audio"
    duration: int = 0
    call_status: str = "completed"
    timestamp: datetime = Field(default_factory=utc_now)


class WhiteboardSnapshot(WireModel):
    """The complete shared-canvas state of a room; replaces, never merges."""

    room_id: str
    elements: list[dict[str, Any]] = Field(default_factory=list)
    app_state: dict[str, Any] = Field(default_factory=dict)
