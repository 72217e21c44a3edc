"""In-memory stand-ins for the WebSocket transport."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Union

from websockets.exceptions import ConnectionClosedError

from chat_common.messages import Message, encode_message

Outcome = Union["FakeSocket", BaseException]


class FakeSocket:
    """A scripted WebSocket connection."""

    def __init__(self) -> None:
        """Create an open socket with no pending frames."""
        self.sent: List[str] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def recv(self) -> str:
        """Return the next delivered frame or raise a delivered error."""
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data: str) -> None:
        """Record an outbound frame."""
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)

    async def close(self) -> None:
        """Close the socket."""
        self.closed = True

    def deliver(self, *frames: Union[str, Message]) -> None:
        """Queue inbound frames."""
        for frame in frames:
            if isinstance(frame, Message):
                frame = encode_message(frame)
            self.inbound.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the server going away."""
        self.inbound.put_nowait(ConnectionClosedError(None, None))


class FakeConnector:
    """Hand out scripted outcomes of connection attempts.

    Once the script runs out every attempt yields a fresh socket.
    """

    def __init__(self, *outcomes: Outcome) -> None:
        """Script the outcomes of consecutive attempts."""
        self.outcomes = list(outcomes)
        self.urls: List[str] = []
        self.attempt_times: List[float] = []
        self.sockets: List[FakeSocket] = []

    async def __call__(self, url: str) -> FakeSocket:
        """Attempt a connection."""
        self.urls.append(url)
        self.attempt_times.append(asyncio.get_running_loop().time())
        outcome = self.outcomes.pop(0) if self.outcomes else FakeSocket()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until a condition holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.001)


def make_message(
    id: int,
    sender_id: int,
    receiver_id: int,
    sent_at: datetime,
    content: str = "",
) -> Message:
    """Create a confirmed message."""
    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)
    return Message(
        id=id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content or f"message {id}",
        sent_at=sent_at,
    )
