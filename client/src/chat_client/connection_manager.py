"""Clientside live channel manager.

The manager owns the only WebSocket connection of a chat session and
drives it through three states:

            connected               unexpected close / error
CONNECTING ----------> OPEN ---------------------------------> CLOSED
    ^                                                            |
    |              reconnect delay elapsed                       |
    +------------------------------------------------------------+

A failed connection attempt also lands in CLOSED. Every entry into
CLOSED schedules exactly one reconnection attempt after the delay given
by the reconnect policy, until the policy runs out of retries. An
owner-initiated close() cancels the pending attempt and the manager
stays CLOSED.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from chat_common.connection import ConnectionState
from chat_common.messages import (
    ChatMessageException,
    Message,
    OutboundMessage,
    chat_recv,
    chat_send,
)

LISTEN_PATH = "/messages/listen"

MessageHandler = Callable[[Message], None]
StateListener = Callable[[ConnectionState], None]
Connector = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class ReconnectPolicy:
    """Delay between reconnection attempts.

    The defaults retry every 3 seconds forever. A backoff factor above 1
    grows the delay geometrically up to max_interval, and max_retries
    bounds the number of consecutive attempts.
    """

    interval: float = 3.0
    backoff_factor: float = 1.0
    max_interval: Optional[float] = None
    max_retries: Optional[int] = None

    def delay(self, attempt: int) -> Optional[float]:
        """Return the delay before reconnect number `attempt` (0-based)."""
        if self.max_retries is not None and attempt >= self.max_retries:
            return None
        delay = self.interval * self.backoff_factor**attempt
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay


def listen_url(server_url: str, credential: str) -> str:
    """Build the live channel URL carrying the bearer credential."""
    parts = urlsplit(server_url)
    path = parts.path.rstrip("/") + LISTEN_PATH
    query = urlencode({"token": credential})
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, path, query, ""))


class ConnectionManager:
    """Connection manager.

    Maintain a single live connection to the messaging endpoint, forward
    inbound messages to the registered handlers and write outbound
    messages upstream.
    """

    def __init__(
        self,
        server_url: str,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        """Construct a connection manager instance."""
        self.log = logging.getLogger("chat-logger")
        self.server_url = server_url
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self._connector: Connector = connector or websockets.connect

        self._state = ConnectionState.CLOSED
        self._credential: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._conn: Optional[Any] = None
        self._upstream_queue: Optional[asyncio.Queue] = None
        self._opened: Optional[asyncio.Event] = None

        self.message_handlers: List[MessageHandler] = []
        self.state_listeners: List[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        """Current connectivity state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if outbound messages can be sent."""
        return self._state == ConnectionState.OPEN

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler called once per inbound message."""
        self.message_handlers.append(handler)

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a listener called on every state change."""
        self.state_listeners.append(listener)

    def open(self, credential: str) -> None:
        """Start connecting to the server.

        Does nothing if a connection is already open or being attempted.
        """
        if self._task is not None and not self._task.done():
            self.log.debug("Connection already supervised, ignoring open()")
            return
        self._credential = credential
        self._task = asyncio.get_running_loop().create_task(
            self._supervise()
        )

    def send(self, message: OutboundMessage) -> bool:
        """Queue an outbound message for the current connection.

        Return False, without touching the transport, if the connection
        is not open, the content is blank or the receiver is unknown.
        """
        if not self.is_open or self._upstream_queue is None:
            self.log.debug("Not connected. Dropping outbound message")
            return False
        if not message.content.strip():
            self.log.debug("Blank content. Dropping outbound message")
            return False
        if message.receiver_id is None:
            self.log.debug("No receiver. Dropping outbound message")
            return False

        self._upstream_queue.put_nowait(message)
        return True

    async def wait_until_open(self) -> None:
        """Wait until the connection is next open."""
        if self._opened is None:
            self._opened = asyncio.Event()
            if self.is_open:
                self._opened.set()
        await self._opened.wait()

    async def close(self) -> None:
        """Close the connection and cancel any pending reconnection."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        await self._close_transport()
        self._set_state(ConnectionState.CLOSED)

    async def _supervise(self) -> None:
        """Connect, serve and reconnect until closed or out of retries."""
        try:
            await self._reconnect_loop()
        finally:
            self._set_state(ConnectionState.CLOSED)

    async def _reconnect_loop(self) -> None:
        assert self._credential is not None
        url = listen_url(self.server_url, self._credential)
        attempt = 0

        while True:
            self._set_state(ConnectionState.CONNECTING)
            self.log.debug(f"Connecting to the server at {self.server_url}...")
            try:
                self._conn = await self._connector(url)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                self.log.warning(
                    f"Connection attempt failed ({type(e).__name__}): {e}"
                )
            else:
                attempt = 0
                await self._serve(self._conn)

            self._set_state(ConnectionState.CLOSED)
            delay = self.reconnect_policy.delay(attempt)
            if delay is None:
                self.log.error(
                    f"Giving up after {attempt} reconnection attempt(s)"
                )
                return
            attempt += 1
            self.log.info(f"Reconnecting in {delay:g}s...")
            await asyncio.sleep(delay)

    async def _serve(self, conn: Any) -> None:
        """Handle an established connection until it drops."""
        self._upstream_queue = asyncio.Queue()
        self._set_state(ConnectionState.OPEN)
        upstream = asyncio.ensure_future(
            self._handle_upstream(conn, self._upstream_queue)
        )
        try:
            await self._handle_downstream(conn)
        except (ConnectionClosed, OSError) as e:
            self.log.warning(f"Connection lost: {e}")
        finally:
            # Messages queued for a dead connection are not replayed
            self._upstream_queue = None
            upstream.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await upstream
            await self._close_transport()

    async def _handle_upstream(self, conn: Any, queue: asyncio.Queue) -> None:
        """Handle upstream traffic, i.e. client to server."""
        while True:
            message = await queue.get()
            try:
                await chat_send(message, conn)
            except (WebSocketException, OSError) as e:
                self.log.warning(
                    f"Failed to send message to '{message.receiver_id}': {e}"
                )
                return

    async def _handle_downstream(self, conn: Any) -> None:
        """Handle downstream traffic, i.e. server to client."""
        while True:
            try:
                message = await chat_recv(conn)
            except ChatMessageException as e:
                self.log.warning(
                    f"Dropping malformed frame ({type(e).__name__}): {e}"
                )
                continue
            self._handle_incoming_message(message)

    def _handle_incoming_message(self, message: Message) -> None:
        """Pass an inbound message to every registered handler."""
        for handler in self.message_handlers:
            try:
                handler(message)
            except Exception:
                # One failing handler must not take the connection down
                self.log.exception(f"Message handler failed on {message.id}")

    async def _close_transport(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close()
            except (OSError, WebSocketException) as e:
                self.log.debug(f"Error while closing the connection: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self.log.info(f"Connection state: {state.name}")

        if self._opened is not None:
            if state == ConnectionState.OPEN:
                self._opened.set()
            else:
                self._opened.clear()

        for listener in self.state_listeners:
            listener(state)
