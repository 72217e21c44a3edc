"""Line-oriented console front end of the chat client."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional

from blessed import Terminal

from chat_common.connection import ConnectionState
from chat_common.messages import Message, User, UserId

from ..conversation import ConversationViewModel, UserSearch
from .view import View

QUIT_COMMAND = "quit"


class UserInterface:
    """Console user interface.

    Plain input lines are sent to the active correspondent, lines
    starting with a slash are commands.
    """

    def __init__(
        self,
        view_model: ConversationViewModel,
        search: Optional[UserSearch] = None,
        term: Optional[Terminal] = None,
        output: Callable[[str], Any] = print,
    ) -> None:
        """Instantiate a UI."""
        self.log = logging.getLogger("chat-logger")
        self.term = term if term is not None else Terminal()
        self.view_model = view_model
        self.search = search
        self.view = View(self.term, view_model.current_user_id)
        self._output = output

        self.slash_cmds: Mapping[str, Callable[..., Awaitable[None]]] = {
            "users": self.cmd_users,
            "chat": self.cmd_chat,
            "history": self.cmd_history,
            "status": self.cmd_status,
            "help": self.cmd_help,
        }

    def echo(self, *lines: str) -> None:
        """Print lines to the terminal."""
        for line in lines:
            self._output(line)

    def on_state_changed(self, state: ConnectionState) -> None:
        """Report connectivity changes."""
        self.echo(self.view.connection_indicator(state))

    def on_new_message_received(self, message: Message) -> None:
        """Print a message if it belongs to the displayed conversation."""
        active = self.view_model.active_correspondent
        if active is None or not message.involves(
            self.view_model.current_user_id, active
        ):
            return
        self.echo(self.view.message_line(message, self._name_of))

    async def handle_line(self, line: str) -> bool:
        """Handle one line of user input; False once the user quits."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            await self._send(line)
            return True

        command, _, argument = line[1:].partition(" ")
        if command == QUIT_COMMAND:
            return False
        handler = self.slash_cmds.get(command)
        if handler is None:
            self.echo(self.term.red(f"Unknown command: /{command}"))
        else:
            await handler(argument.strip())
        return True

    async def cmd_users(self, query: str) -> None:
        """List users to chat with."""
        entries = await self.view_model.correspondents(self.search, query)
        self.echo(*self.view.correspondent_lines(entries))

    async def cmd_chat(self, argument: str) -> None:
        """Open the conversation with a user."""
        if not argument:
            self.echo(self.term.red("Usage: /chat <user id>"))
            return
        user_id: UserId = int(argument) if argument.isdigit() else argument
        self.view_model.select_correspondent(user_id)
        profile = await self.view_model.resolve_correspondent(user_id)
        name = profile.username if profile else f"user {user_id}"
        self.echo(self.term.bold_underline(f"Conversation with {name}"))
        await self.cmd_history("")

    async def cmd_history(self, _: str) -> None:
        """Print the active conversation grouped per day."""
        await self._resolve_authors(self.view_model.messages())
        groups = self.view_model.group_by_day(now=self.view.now())
        self.echo(*self.view.conversation_lines(groups, self._name_of))

    async def cmd_status(self, _: str) -> None:
        """Print the connection state."""
        self.on_state_changed(self.view_model.connection.state)

    async def cmd_help(self, _: str) -> None:
        """List the commands."""
        lines = [f"/{name}" for name in self.slash_cmds]
        self.echo(*lines, f"/{QUIT_COMMAND}")

    async def run(self) -> None:
        """Read and handle input lines until the user quits."""
        loop = asyncio.get_running_loop()
        keep_going = True
        while keep_going:
            try:
                line = await loop.run_in_executor(None, input)
            except EOFError:
                break
            keep_going = await self.handle_line(line)

    async def _send(self, text: str) -> None:
        if self.view_model.active_correspondent is None:
            self.echo(self.term.red("Pick someone to talk to with /chat"))
        elif not self.view_model.send_to_active(text):
            self.echo(self.view.connection_indicator(ConnectionState.CLOSED))

    async def _resolve_authors(self, messages: List[Message]) -> None:
        senders = {message.sender_id for message in messages}
        senders.discard(self.view_model.current_user_id)
        await asyncio.gather(
            *(self.view_model.resolve_correspondent(s) for s in senders)
        )

    def _name_of(self, user_id: UserId) -> Optional[str]:
        profile: Optional[User] = self.view_model.directory.peek(user_id)
        return profile.username if profile else None
