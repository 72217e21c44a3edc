"""Text rendering of correspondents and conversations."""

from datetime import datetime, tzinfo
from typing import Callable, List, Optional, Sequence, Tuple

from blessed import Terminal

from chat_common.connection import ConnectionState
from chat_common.messages import Message, User, UserId

from ..conversation import DayGroup, format_time

UNKNOWN_USER = "unknown user"
PREVIEW_WIDTH = 40


class View:
    """Render view model output as terminal lines."""

    def __init__(
        self,
        term: Terminal,
        current_user_id: UserId,
        tz: Optional[tzinfo] = None,
    ) -> None:
        """Instantiate a view."""
        self.term = term
        self.current_user_id = current_user_id
        self.tz = tz

    def connection_indicator(self, state: ConnectionState) -> str:
        """Describe connectivity; red unless connected."""
        if state == ConnectionState.OPEN:
            return self.term.green("● connected")
        if state == ConnectionState.CONNECTING:
            return self.term.yellow("● connecting...")
        return self.term.red("● disconnected, trying to reconnect...")

    def correspondent_lines(
        self, entries: Sequence[Tuple[User, Optional[Message]]]
    ) -> List[str]:
        """Render the list of users to chat with."""
        if not entries:
            return [self.term.silver("No users")]
        lines = []
        for user, last in entries:
            line = f"{self.term.bold(user.username)} ({user.id})"
            if last is not None:
                prefix = "You: " if last.sender_id == self.current_user_id else ""
                preview = (prefix + last.content)[:PREVIEW_WIDTH]
                line += " " + self.term.silver(preview)
            lines.append(line)
        return lines

    def conversation_lines(
        self,
        groups: Sequence[DayGroup],
        name_of: Callable[[UserId], Optional[str]],
    ) -> List[str]:
        """Render a day-grouped conversation."""
        if not groups:
            return [self.term.silver("No messages yet. Write the first one!")]
        lines = []
        for group in groups:
            lines.append(self.term.center(self.term.silver(group.label)))
            for message in group.messages:
                lines.append(self.message_line(message, name_of))
        return lines

    def message_line(
        self,
        message: Message,
        name_of: Callable[[UserId], Optional[str]],
    ) -> str:
        """Render a single message."""
        stamp = self.term.silver(format_time(message, self.tz))
        if message.sender_id == self.current_user_id:
            author = self.term.blue("you")
        else:
            author = self.term.bold(name_of(message.sender_id) or UNKNOWN_USER)
        return f"[{stamp}] {author}: {message.content}"

    def now(self) -> datetime:
        """Current time in the view's time zone."""
        return datetime.now(self.tz)
