"""Define chat message formats and the JSON frame codec."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from json import JSONDecodeError, JSONDecoder, JSONEncoder
from typing import Any, Dict, FrozenSet, Optional, Protocol, Union

UserId = Union[int, str]
MessageId = Union[int, str]
ConversationPair = FrozenSet[UserId]
ChatSerial = str

# datetime.fromisoformat() accepts at most microsecond precision
_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


class ChatMessageException(Exception):
    """Abstract exception type."""

    pass


class ChatDeserializationError(ChatMessageException):
    """Error thrown on deserialization failure."""

    pass


class ChatMalformedMessageError(ChatMessageException):
    """Error thrown on otherwise malformed message."""

    pass


def conversation_pair(user_a: UserId, user_b: UserId) -> ConversationPair:
    """Return the order-independent key of a direct-message thread."""
    return frozenset((user_a, user_b))


@dataclass(frozen=True)
class Message:
    """A server-confirmed direct message."""

    id: MessageId
    sender_id: UserId
    receiver_id: UserId
    content: str
    sent_at: datetime
    pair: ConversationPair = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Derive the conversation pair."""
        object.__setattr__(
            self, "pair", conversation_pair(self.sender_id, self.receiver_id)
        )

    def involves(self, user_a: UserId, user_b: UserId) -> bool:
        """Check if the message was exchanged between exactly two users."""
        return self.pair == conversation_pair(user_a, user_b)


@dataclass(frozen=True)
class OutboundMessage:
    """A message descriptor sent upstream, before the server numbers it."""

    sender_id: UserId
    receiver_id: Optional[UserId]
    content: str


@dataclass(frozen=True)
class User:
    """A user profile as returned by the directory."""

    id: UserId
    username: str
    email: str
    created_at: Optional[datetime] = None


class TextSocket(Protocol):
    """The part of a WebSocket connection the codec relies on."""

    async def recv(self) -> Union[str, bytes]:
        """Receive a single frame."""
        ...

    async def send(self, message: str) -> None:
        """Send a single frame."""
        ...


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Timestamps without an offset are taken to be UTC.
    """
    if not isinstance(value, str):
        raise ChatMalformedMessageError(f"Timestamp is not a string: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_PATTERN.sub(r"\1", text)
    try:
        stamp = datetime.fromisoformat(text)
    except ValueError:
        raise ChatMalformedMessageError(f"Invalid timestamp: {value!r}")
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def encode_outbound(message: OutboundMessage) -> ChatSerial:
    """Serialize an outbound message descriptor."""
    return JSONEncoder().encode(
        {
            "sender_id": message.sender_id,
            "receiver_id": message.receiver_id,
            "content": message.content,
        }
    )


def encode_message(message: Message) -> ChatSerial:
    """Serialize a confirmed message the way the server delivers it."""
    return JSONEncoder().encode(
        {
            "message_id": message.id,
            "sender_id": message.sender_id,
            "receiver_id": message.receiver_id,
            "content": message.content,
            "sent_at": message.sent_at.isoformat(),
        }
    )


def decode_message(serial: Union[ChatSerial, bytes]) -> Message:
    """Deserialize an inbound message frame."""
    pretender = _decode_object(serial)
    _validate_format(pretender)

    return Message(
        id=pretender["message_id"],
        sender_id=pretender["sender_id"],
        receiver_id=pretender["receiver_id"],
        content=pretender["content"],
        sent_at=parse_timestamp(pretender["sent_at"]),
    )


def decode_user(pretender: Any) -> User:
    """Build a user profile out of a decoded directory record."""
    if not isinstance(pretender, dict):
        raise ChatMalformedMessageError("User record is not an object")
    try:
        user_id = pretender["user_id"]
        username = pretender["username"]
    except KeyError as e:
        raise ChatMalformedMessageError(f"User field missing: {e.args[0]}")
    if not _is_identifier(user_id) or not isinstance(username, str):
        raise ChatMalformedMessageError("Invalid user record")

    created_at = pretender.get("created_at")
    return User(
        id=user_id,
        username=username,
        email=str(pretender.get("email") or ""),
        created_at=parse_timestamp(created_at) if created_at else None,
    )


async def chat_recv(socket: TextSocket) -> Message:
    """Receive a chat message from a socket."""
    serial = await socket.recv()
    return decode_message(serial)


async def chat_send(message: OutboundMessage, socket: TextSocket) -> None:
    """Push a chat message to a socket."""
    serial = encode_outbound(message)
    await socket.send(serial)


def _is_identifier(value: Any) -> bool:
    # bool is an int subclass and never a valid id
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def _decode_object(serial: Union[ChatSerial, bytes]) -> Dict[str, Any]:
    """Decode a frame into a JSON object."""
    if isinstance(serial, bytes):
        try:
            serial = serial.decode("utf-8")
        except UnicodeDecodeError:
            raise ChatDeserializationError("Frame is not valid UTF-8")
    try:
        pretender = JSONDecoder().decode(serial)
    except JSONDecodeError:
        raise ChatDeserializationError("JSON deserialization failed")
    if not isinstance(pretender, dict):
        raise ChatDeserializationError("Frame is not a JSON object")
    return pretender


def _validate_format(pretender: Dict[str, Any]) -> None:
    """Validate the format of an inbound message frame."""
    for expected_field in (
        "message_id",
        "sender_id",
        "receiver_id",
        "content",
        "sent_at",
    ):
        if expected_field not in pretender:
            raise ChatMalformedMessageError(
                f"Message field missing: {expected_field}"
            )

    for id_field in ("message_id", "sender_id", "receiver_id"):
        if not _is_identifier(pretender[id_field]):
            raise ChatMalformedMessageError(f"Invalid {id_field}")

    content = pretender["content"]
    if not isinstance(content, str) or not content:
        raise ChatMalformedMessageError("Empty or non-text content")
