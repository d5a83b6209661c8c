import pytest

from conftest import emitted, run_inline
from data_models import (
    PrivateHistoryRequest,
    PrivateMessagePayload,
    RoomHistoryRequest,
    RoomMessagePayload,
    TypingPayload,
)
from message_router import MessageRouter
from message_store import StorageError
from room_registry import RoomMembershipRegistry
from session_directory import SessionDirectory


@pytest.fixture
def directory():
    return SessionDirectory()


@pytest.fixture
def registry(store, mock_socketio):
    return RoomMembershipRegistry(store, mock_socketio, spawn=run_inline)


@pytest.fixture
def router(store, mock_socketio, directory, registry):
    return MessageRouter(store, mock_socketio, directory, registry, spawn=run_inline)


def room_message(content="hi", room_id="r1"):
    return RoomMessagePayload(room_id=room_id, sender_id="u1", sender_name="alice", content=content)


def private_message(receiver_id="u2", content="psst"):
    return PrivateMessagePayload(receiver_id=receiver_id, sender_id="u1", sender_name="alice", content=content)


def test_room_message_is_persisted_then_delivered_to_all_members(router, registry, store, mock_socketio):
    registry.join("c1", "r1", "u1")
    registry.join("c2", "r1", "u2")
    mock_socketio.reset_mock()

    stored = router.send_room_message("c1", room_message())

    assert stored.message_id in store.messages
    deliveries = emitted(mock_socketio, "room_message")
    assert sorted(to for _, to in deliveries) == ["c1", "c2"]
    data = deliveries[0][0]
    assert data["messageId"] == stored.message_id
    assert data["content"] == "hi"
    assert data["roomId"] == "r1"
    assert data["isPrivate"] is False


def test_room_message_notification_is_broadcast_without_content(router, registry, mock_socketio):
    registry.join("c1", "r1", "u1")

    stored = router.send_room_message("c1", room_message())

    (data, to), = emitted(mock_socketio, "room_message_notification")
    assert to is None
    assert data["messageId"] == stored.message_id
    assert data["senderName"] == "alice"
    assert "content" not in data


def test_room_message_store_failure_delivers_nothing(router, registry, store, mock_socketio):
    registry.join("c1", "r1", "u1")
    store.failing.add("add_message")

    with pytest.raises(StorageError):
        router.send_room_message("c1", room_message())

    assert emitted(mock_socketio, "room_message") == []
    assert emitted(mock_socketio, "room_message_notification") == []


def test_get_room_messages_returns_oldest_first(router, registry, mock_socketio):
    registry.join("c1", "r1", "u1")
    for text in ("one", "two", "three"):
        router.send_room_message("c1", room_message(text))

    messages = router.get_room_messages("c1", RoomHistoryRequest(room_id="r1", limit=2))

    assert [m["content"] for m in messages] == ["two", "three"]
    (data, to), = emitted(mock_socketio, "room_messages")
    assert to == "c1"
    assert data["roomId"] == "r1"


def test_private_message_goes_to_sender_and_receiver(router, directory, store, mock_socketio):
    directory.bind("u1", "c1")
    directory.bind("u2", "c2")

    stored = router.send_private_message("c1", private_message())

    deliveries = emitted(mock_socketio, "private_message")
    assert sorted(to for _, to in deliveries) == ["c1", "c2"]
    assert deliveries[0][0]["chatId"] == "u1:u2"
    assert store.private_chats["u1:u2"].last_message_id == stored.message_id


def test_private_message_to_offline_receiver_is_stored(router, directory, store, mock_socketio):
    directory.bind("u1", "c1")

    stored = router.send_private_message("c1", private_message())

    assert [to for _, to in emitted(mock_socketio, "private_message")] == ["c1"]
    assert store.messages[stored.message_id].receiver_id == "u2"


def test_private_message_follows_the_newest_binding(router, directory, mock_socketio):
    directory.bind("u1", "c1")
    directory.bind("u2", "c2")
    directory.bind("u2", "c3")

    router.send_private_message("c1", private_message())

    assert sorted(to for _, to in emitted(mock_socketio, "private_message")) == ["c1", "c3"]


def test_private_message_to_self_is_delivered_once(router, directory, mock_socketio):
    directory.bind("u1", "c1")

    router.send_private_message("c1", private_message(receiver_id="u1"))

    assert [to for _, to in emitted(mock_socketio, "private_message")] == ["c1"]


def test_private_chat_summary_failure_delivers_nothing(router, directory, store, mock_socketio):
    directory.bind("u1", "c1")
    directory.bind("u2", "c2")
    store.failing.add("upsert_private_chat")

    with pytest.raises(StorageError):
        router.send_private_message("c1", private_message())

    assert emitted(mock_socketio, "private_message") == []


def test_private_history_covers_both_directions(router, directory, mock_socketio):
    directory.bind("u1", "c1")
    directory.bind("u2", "c2")
    router.send_private_message("c1", private_message(content="hello"))
    router.send_private_message(
        "c2", PrivateMessagePayload(receiver_id="u1", sender_id="u2", sender_name="bob", content="hey")
    )

    messages = router.get_private_messages("c1", "u1", PrivateHistoryRequest(other_user_id="u2"))

    assert [m["content"] for m in messages] == ["hello", "hey"]
    (data, to), = emitted(mock_socketio, "private_messages")
    assert to == "c1"
    assert data["otherUserId"] == "u2"


def test_mark_as_read(router, directory):
    directory.bind("u1", "c1")
    stored = router.send_private_message("c1", private_message())

    assert router.mark_as_read(stored.message_id) is True
    assert router.mark_as_read("missing") is False


def test_mark_chat_as_read_acknowledges_and_notifies_peer(router, directory, mock_socketio):
    directory.bind("u1", "c1")
    directory.bind("u2", "c2")
    router.send_private_message("c1", private_message(content="a"))
    router.send_private_message("c1", private_message(content="b"))

    count = router.mark_chat_as_read("c2", "u2", "u1")

    assert count == 2
    (ack, ack_to), = emitted(mock_socketio, "messages_marked_read")
    assert ack_to == "c2"
    assert ack == {"otherUserId": "u1", "count": 2}
    (receipt, receipt_to), = emitted(mock_socketio, "chat_read_status")
    assert receipt_to == "c1"
    assert receipt["readerId"] == "u2"


def test_room_typing_skips_the_typist(router, registry, mock_socketio):
    registry.join("c1", "r1", "u1")
    registry.join("c2", "r1", "u2")
    registry.join("c3", "r1", "u3")
    mock_socketio.reset_mock()

    sent = router.relay_typing("c1", TypingPayload(room_id="r1", user_id="u1", username="alice"))

    assert sent == 2
    deliveries = emitted(mock_socketio, "user_typing")
    assert sorted(to for _, to in deliveries) == ["c2", "c3"]
    assert deliveries[0][0] == {"userId": "u1", "username": "alice", "roomId": "r1"}


def test_direct_typing_goes_to_target_only(router, directory, registry, mock_socketio):
    directory.bind("u2", "c2")
    registry.join("c3", "r1", "u3")

    router.relay_typing("c1", TypingPayload(target_id="u2", room_id="r1", user_id="u1", is_private=True), stopped=True)

    (data, to), = emitted(mock_socketio, "user_stop_typing")
    assert to == "c2"
    assert data == {"userId": "u1", "isPrivate": True}


def test_typing_to_offline_target_is_dropped(router, mock_socketio):
    assert router.relay_typing("c1", TypingPayload(target_id="u9", user_id="u1")) == 0
    assert emitted(mock_socketio, "user_typing") == []
