import pytest
from pydantic import ValidationError

from config import MAX_HISTORY_LIMIT
from data_models import (
    CallSignal,
    MessageRecord,
    PrivateHistoryRequest,
    RoomHistoryRequest,
    RoomMessagePayload,
    TypingPayload,
)
from utils import pair_key


def test_payloads_accept_camel_case_and_snake_case():
    wire = RoomMessagePayload.model_validate({"roomId": "r1", "senderId": "u1", "content": "hi"})
    python = RoomMessagePayload(room_id="r1", sender_id="u1", content="hi")

    assert wire == python
    assert wire.message_type == "text"


def test_empty_content_is_rejected():
    with pytest.raises(ValidationError):
        RoomMessagePayload.model_validate({"roomId": "r1", "senderId": "u1", "content": ""})


def test_history_limit_is_capped_not_rejected():
    assert RoomHistoryRequest.model_validate({"roomId": "r1"}).limit == 50
    assert RoomHistoryRequest.model_validate({"roomId": "r1", "limit": 500}).limit == MAX_HISTORY_LIMIT
    assert PrivateHistoryRequest.model_validate({"otherUserId": "u2", "limit": 500}).limit == MAX_HISTORY_LIMIT
    assert PrivateHistoryRequest.model_validate({"otherUserId": "u2", "limit": 20}).limit == 20
    with pytest.raises(ValidationError):
        RoomHistoryRequest.model_validate({"roomId": "r1", "limit": 0})


def test_typing_needs_a_target():
    with pytest.raises(ValidationError):
        TypingPayload.model_validate({"userId": "u1"})


@pytest.mark.parametrize(
    "data, direct",
    [
        ({"roomId": "r1"}, False),
        ({"targetId": "u2"}, True),
        ({"roomId": "r1", "targetId": "u2"}, False),
        ({"roomId": "r1", "targetId": "u2", "isPrivate": True}, True),
    ],
)
def test_typing_addressing(data, direct):
    assert TypingPayload.model_validate(data).is_direct is direct


def test_call_signal_keeps_unknown_fields():
    signal = CallSignal.model_validate({"to": "u2", "candidate": {"sdpMid": "0"}})

    assert signal.model_dump(by_alias=True) == {"to": "u2", "candidate": {"sdpMid": "0"}}


def test_message_record_wire_form():
    record = MessageRecord(sender_id="u1", content="hi", room_id="r1")

    wire = record.to_wire()

    assert wire["messageId"] == record.message_id
    assert wire["roomId"] == "r1"
    assert "receiverId" not in wire
    assert isinstance(wire["timestamp"], str)


def test_pair_key_is_order_independent():
    assert pair_key("u2", "u1") == pair_key("u1", "u2") == "u1:u2"
