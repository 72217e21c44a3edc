"""Conversation view model.

Turn the messages exchanged with the selected correspondent into what
the user interface renders, and mediate outbound messages. Sent messages
are not shown until the server echoes them back with an id.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import aiohttp

from chat_common.messages import (
    ChatMessageException,
    Message,
    OutboundMessage,
    User,
    UserId,
)

from .connection_manager import ConnectionManager
from .directory import DirectoryCache
from .message_store import MessageStore

UserSearch = Callable[[str], Awaitable[List[User]]]

TODAY_LABEL = "Today"
YESTERDAY_LABEL = "Yesterday"


@dataclass
class DayGroup:
    """A run of messages sent on the same calendar day."""

    day: date
    label: str
    messages: List[Message]


def day_label(day: date, today: date) -> str:
    """Describe a calendar day relative to today."""
    if day == today:
        return TODAY_LABEL
    if day == today - timedelta(days=1):
        return YESTERDAY_LABEL
    label = f"{day.day} {day.strftime('%b')}"
    if day.year != today.year:
        label += f" {day.year}"
    return label


def group_by_day(
    messages: Sequence[Message],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> List[DayGroup]:
    """Split an ordered message sequence into per-day groups.

    Days are taken in the local time zone unless `tz` is given. Labels
    are computed relative to `now`, which defaults to the current time.
    """
    if now is None:
        now = datetime.now(tz)
    today = now.astimezone(tz).date()

    groups: List[DayGroup] = []
    for message in messages:
        day = message.sent_at.astimezone(tz).date()
        if not groups or groups[-1].day != day:
            groups.append(DayGroup(day, day_label(day, today), []))
        groups[-1].messages.append(message)
    return groups


def format_time(message: Message, tz: Optional[tzinfo] = None) -> str:
    """Format the time a message was sent at as HH:MM."""
    return message.sent_at.astimezone(tz).strftime("%H:%M")


class ConversationViewModel:
    """Conversation view model of the signed-in user."""

    def __init__(
        self,
        current_user_id: UserId,
        store: MessageStore,
        connection: ConnectionManager,
        directory: DirectoryCache,
    ) -> None:
        """Construct the view model."""
        self.log = logging.getLogger("chat-logger")
        self.current_user_id = current_user_id
        self.store = store
        self.connection = connection
        self.directory = directory
        self._active: Optional[UserId] = None
        self._closed = False

    @property
    def active_correspondent(self) -> Optional[UserId]:
        """Correspondent whose conversation is displayed."""
        return self._active

    def select_correspondent(self, user_id: UserId) -> None:
        """Display the conversation with another user."""
        self._active = user_id

    def messages(self) -> List[Message]:
        """Return the active conversation, oldest first."""
        if self._active is None:
            return []
        return self.store.project_conversation(
            self.current_user_id, self._active
        )

    def group_by_day(
        self,
        messages: Optional[Sequence[Message]] = None,
        now: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
    ) -> List[DayGroup]:
        """Group messages, by default the active conversation, per day."""
        if messages is None:
            messages = self.messages()
        return group_by_day(messages, now=now, tz=tz)

    def is_own(self, message: Message) -> bool:
        """Check if a message was sent by the signed-in user."""
        return message.sender_id == self.current_user_id

    def can_send(self, content: str) -> bool:
        """Check if the send affordance should be enabled."""
        return (
            bool(content.strip())
            and self._active is not None
            and self.connection.is_open
        )

    def send_to_active(self, content: str) -> bool:
        """Send a message to the active correspondent.

        Return False if nothing was sent.
        """
        if not self.can_send(content):
            self.log.debug("Send rejected: blank, unaddressed or offline")
            return False
        message = OutboundMessage(
            sender_id=self.current_user_id,
            receiver_id=self._active,
            content=content.strip(),
        )
        self.log.debug(f"Sending message to {message.receiver_id}...")
        return self.connection.send(message)

    async def resolve_correspondent(self, user_id: UserId) -> Optional[User]:
        """Look up a profile; None if unknown or the view is gone."""
        profile = await self.directory.resolve(user_id)
        if self._closed:
            return None
        return profile

    async def correspondents(
        self, search: Optional[UserSearch] = None, query: str = ""
    ) -> List[Tuple[User, Optional[Message]]]:
        """List users to chat with, each with the latest message exchanged.

        Without a directory search, list the cached profiles of everyone
        a message was exchanged with, most recent first. A failed search
        lists nobody.
        """
        if search is not None:
            try:
                users = await search(query)
            except (
                aiohttp.ClientError,
                asyncio.TimeoutError,
                ChatMessageException,
            ) as e:
                self.log.warning(
                    f"User search failed ({type(e).__name__}): {e}"
                )
                users = []
            self.directory.prime(users)
        else:
            cached = (
                self.directory.peek(user_id)
                for user_id in self.store.correspondents(self.current_user_id)
            )
            users = [profile for profile in cached if profile is not None]
        if self._closed:
            return []
        return [
            (user, self.store.last_message(self.current_user_id, user.id))
            for user in users
            if user.id != self.current_user_id
        ]

    async def close(self) -> None:
        """Tear the view down.

        Close the connection but let pending profile fetches complete.
        """
        self._closed = True
        self._active = None
        await self.connection.close()
