"""
Defines the in-memory structures describing live connections and presence.

Nothing in this module is persisted: these models exist for the lifetime of
the process and are owned by the session directory and presence tracker.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from utils import utc_now


class ConnectionInfo(BaseModel):
    """The identity a transport connection authenticated as."""

    # The opaque Socket.IO session id assigned by the transport.
    connection_id: str
    user_id: str
    username: Optional[str] = None
    connected_at: datetime = Field(default_factory=utc_now)


class ActivityRecord(BaseModel):
    """
    Tracks the last activity of an online user and its pending inactivity timer.

    The generation increases on every rearm; a timer callback carrying an older
    generation belongs to a timer that was already replaced and must be ignored.
    """

    # The timer handle is an eventlet GreenThread (or a test double).
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: str
    last_activity: datetime
    generation: int = 0
    timer: Any = None
