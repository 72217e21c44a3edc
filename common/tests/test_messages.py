"""Test the chat frame codec."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from chat_common.messages import (
    ChatDeserializationError,
    ChatMalformedMessageError,
    ChatMessageException,
    Message,
    OutboundMessage,
    chat_recv,
    chat_send,
    conversation_pair,
    decode_message,
    decode_user,
    encode_message,
    encode_outbound,
    parse_timestamp,
)


def frame(**overrides):
    """Build a valid inbound frame with some fields replaced."""
    fields = {
        "message_id": 5,
        "sender_id": 1,
        "receiver_id": 2,
        "content": "hello",
        "sent_at": "2026-10-17T08:30:00",
    }
    fields.update(overrides)
    return json.dumps(fields)


class ScriptedSocket:
    """Socket returning canned frames and recording sent ones."""

    def __init__(self, *frames):
        self.frames = list(frames)
        self.sent = []

    async def recv(self):
        return self.frames.pop(0)

    async def send(self, message):
        self.sent.append(message)


def test_decode_valid_frame():
    """Test decoding a well-formed message."""
    message = decode_message(frame())

    assert message.id == 5
    assert message.sender_id == 1
    assert message.receiver_id == 2
    assert message.content == "hello"
    assert message.sent_at == datetime(2026, 10, 17, 8, 30, tzinfo=timezone.utc)
    assert message.pair == frozenset((1, 2))


def test_decode_bytes_frame():
    """Test that binary frames carrying UTF-8 JSON are accepted."""
    assert decode_message(frame(content="zażółć").encode()).content == "zażółć"


@pytest.mark.parametrize(
    "value, expected",
    [
        (
            "2026-10-17T08:30:00Z",
            datetime(2026, 10, 17, 8, 30, tzinfo=timezone.utc),
        ),
        (
            "2026-10-17T08:30:00.123456789",
            datetime(2026, 10, 17, 8, 30, 0, 123456, tzinfo=timezone.utc),
        ),
        (
            "2026-10-17T10:30:00+02:00",
            datetime(2026, 10, 17, 10, 30, tzinfo=timezone(timedelta(hours=2))),
        ),
    ],
)
def test_parse_timestamp(value, expected):
    """Test the accepted timestamp spellings."""
    stamp = parse_timestamp(value)
    assert stamp == expected
    assert stamp.utcoffset() == expected.utcoffset()


@pytest.mark.parametrize(
    "serial, error",
    [
        ("not json", ChatDeserializationError),
        ("[1, 2, 3]", ChatDeserializationError),
        (b"\xff\xfe", ChatDeserializationError),
        (json.dumps({"message_id": 1}), ChatMalformedMessageError),
        (frame(content=""), ChatMalformedMessageError),
        (frame(content=None), ChatMalformedMessageError),
        (frame(sender_id=True), ChatMalformedMessageError),
        (frame(receiver_id=[2]), ChatMalformedMessageError),
        (frame(sent_at="yesterday"), ChatMalformedMessageError),
        (frame(sent_at=1700000000), ChatMalformedMessageError),
    ],
)
def test_decode_malformed_frame(serial, error):
    """Test that malformed frames are rejected with a codec error."""
    with pytest.raises(error):
        decode_message(serial)


def test_codec_errors_share_a_base():
    """Test that all codec errors can be caught together."""
    assert issubclass(ChatDeserializationError, ChatMessageException)
    assert issubclass(ChatMalformedMessageError, ChatMessageException)


def test_encode_outbound():
    """Test the upstream frame layout."""
    serial = encode_outbound(OutboundMessage(1, 2, "hi"))
    assert json.loads(serial) == {
        "sender_id": 1,
        "receiver_id": 2,
        "content": "hi",
    }


def test_encode_message_is_decodable():
    """Test that a confirmed message survives the server frame layout."""
    message = Message(
        id="m-1",
        sender_id="alice",
        receiver_id="bob",
        content="hi",
        sent_at=datetime(2026, 10, 17, 8, 30, tzinfo=timezone.utc),
    )
    assert decode_message(encode_message(message)) == message


def test_conversation_pair_is_symmetric():
    """Test that both directions of a thread share one key."""
    assert conversation_pair(1, 2) == conversation_pair(2, 1)
    assert conversation_pair(1, 1) == frozenset((1,))
    assert conversation_pair(1, 2) != conversation_pair(1, 3)


def test_message_involves():
    """Test matching a message against a pair of users."""
    message = decode_message(frame())
    assert message.involves(2, 1)
    assert not message.involves(1, 3)


def test_decode_user_ignores_extra_fields():
    """Test building a profile out of a directory record."""
    user = decode_user(
        {
            "user_id": 7,
            "username": "bob",
            "email": "bob@example.com",
            "password_hash": "secret",
            "created_at": "2026-01-02T03:04:05Z",
        }
    )
    assert user.id == 7
    assert user.username == "bob"
    assert user.created_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert not hasattr(user, "password_hash")


@pytest.mark.parametrize(
    "record", [[], {"username": "bob"}, {"user_id": 7, "username": None}]
)
def test_decode_malformed_user(record):
    """Test rejecting unusable directory records."""
    with pytest.raises(ChatMalformedMessageError):
        decode_user(record)


def test_socket_helpers():
    """Test sending and receiving through a socket."""
    socket = ScriptedSocket(frame(content="over the wire"))

    async def scenario():
        await chat_send(OutboundMessage(1, 2, "out"), socket)
        return await chat_recv(socket)

    received = asyncio.run(scenario())

    assert received.content == "over the wire"
    assert json.loads(socket.sent[0])["content"] == "out"
