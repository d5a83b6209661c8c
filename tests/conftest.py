from datetime import datetime
from typing import Any, Optional

import pytest

from data_models import CallLogRecord, MessageRecord, PrivateChatRecord, UserRecord, UserStatus
from message_store import StorageError
from utils import pair_key


class FakeTimer:
    def __init__(self, scheduler, due, func, args):
        self._scheduler = scheduler
        self.due = due
        self.func = func
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """
    Deterministic stand-in for schedule_after: nothing fires until the test
    advances the clock.
    """

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def __call__(self, delay, func, *args):
        timer = FakeTimer(self, self.now + delay, func, args)
        self.timers.append(timer)
        return timer

    def advance(self, seconds):
        self.now += seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and not t.fired and t.due <= self.now]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            timer.fired = True
            timer.func(*timer.args)

    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]


def run_inline(func, *args, **kwargs):
    """Spawner that runs detached work immediately on the caller's stack."""
    func(*args, **kwargs)


def _newest_first(rows, limit):
    # Insertion order breaks timestamp ties.
    return sorted(reversed(rows), key=lambda m: m.timestamp, reverse=True)[:limit]


class InMemoryChatStore:
    """
    Test double with the same surface as ChatStore. Any operation named in
    `failing` raises StorageError.
    """

    def __init__(self):
        self.messages: dict[str, MessageRecord] = {}
        self.private_chats: dict[str, PrivateChatRecord] = {}
        self.users: dict[str, UserRecord] = {}
        self.room_visits: dict[tuple[str, str], datetime] = {}
        self.call_logs: list[CallLogRecord] = []
        self.status_updates: list[tuple[str, UserStatus]] = []
        self.failing: set[str] = set()

    def _check(self, operation):
        if operation in self.failing:
            raise StorageError(f"{operation} failed")

    def add_message(self, record: MessageRecord) -> MessageRecord:
        self._check("add_message")
        self.messages[record.message_id] = record
        return record

    def recent_room_messages(self, room_id, limit):
        self._check("recent_room_messages")
        rows = [m for m in self.messages.values() if m.room_id == room_id and not m.is_private]
        return _newest_first(rows, limit)

    def recent_private_messages(self, user_id, other_user_id, limit):
        self._check("recent_private_messages")
        key = pair_key(user_id, other_user_id)
        rows = [m for m in self.messages.values() if m.is_private and pair_key(m.sender_id, m.receiver_id) == key]
        return _newest_first(rows, limit)

    def mark_message_read(self, message_id):
        self._check("mark_message_read")
        if message_id not in self.messages:
            return False
        self.messages[message_id].is_read = True
        return True

    def mark_chat_read(self, reader_id, other_user_id):
        self._check("mark_chat_read")
        unread = [
            m for m in self.messages.values()
            if m.is_private and m.receiver_id == reader_id and m.sender_id == other_user_id and not m.is_read
        ]
        for m in unread:
            m.is_read = True
        return len(unread)

    def upsert_private_chat(self, sender_id, receiver_id, message_id, at):
        self._check("upsert_private_chat")
        chat_id = pair_key(sender_id, receiver_id)
        existing = self.private_chats.get(chat_id)
        chat = PrivateChatRecord(
            chat_id=chat_id,
            participants=existing.participants if existing else (sender_id, receiver_id),
            last_message_id=message_id,
            last_message_at=at,
            created_at=existing.created_at if existing else at,
        )
        self.private_chats[chat_id] = chat
        return chat

    def get_user(self, user_id) -> Optional[UserRecord]:
        self._check("get_user")
        return self.users.get(user_id)

    def save_user(self, record: UserRecord) -> UserRecord:
        self.users[record.user_id] = record
        return record

    def set_user_status(self, user_id, status, at):
        self._check("set_user_status")
        self.status_updates.append((user_id, status))
        user = self.users.get(user_id) or UserRecord(user_id=user_id)
        user.status = status
        user.last_active_at = at
        self.users[user_id] = user

    def record_room_visit(self, user_id, room_id, at):
        self._check("record_room_visit")
        self.room_visits[(user_id, room_id)] = at

    def add_call_log(self, record: CallLogRecord) -> CallLogRecord:
        self._check("add_call_log")
        self.call_logs.append(record)
        return record


def emitted(mock_socketio, event: str) -> list[tuple[Any, Optional[str]]]:
    """Returns (data, to) for every emit of `event` on a mocked SocketIO."""
    found = []
    for call in mock_socketio.emit.call_args_list:
        if call.args and call.args[0] == event:
            data = call.args[1] if len(call.args) > 1 else None
            found.append((data, call.kwargs.get("to")))
    return found


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def store():
    return InMemoryChatStore()


@pytest.fixture
def mock_socketio(mocker):
    return mocker.MagicMock()
