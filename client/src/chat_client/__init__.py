"""Real-time direct message client."""

import asyncio
import logging
import logging.handlers
from typing import Optional

from chat_common.messages import Message

from .api import DirectoryAPI
from .config import ClientConfig
from .connection_manager import ConnectionManager, ReconnectPolicy
from .conversation import ConversationViewModel, DayGroup, group_by_day
from .directory import DirectoryCache
from .message_store import MessageStore
from .user_interface import UserInterface

__all__ = [
    "ChatClient",
    "ClientConfig",
    "ConnectionManager",
    "ConversationViewModel",
    "DayGroup",
    "DirectoryCache",
    "MessageStore",
    "ReconnectPolicy",
    "group_by_day",
]


class ChatClient:
    """Frontend application starter."""

    def __init__(self, config: Optional[ClientConfig] = None) -> None:
        """Construct the client object."""
        self.config = config or ClientConfig.from_env()

        self._do_logger_config()
        self.log = logging.getLogger("chat-logger")

        self.store = MessageStore()
        self.api = DirectoryAPI(self.config.api_url, self.config.token)
        self.directory = DirectoryCache(self.api.fetch_user)
        self.connection = ConnectionManager(
            self.config.server_url,
            reconnect_policy=self.config.reconnect_policy,
        )
        self.view_model = ConversationViewModel(
            current_user_id=self.config.user_id,
            store=self.store,
            connection=self.connection,
            directory=self.directory,
        )
        self.ui = UserInterface(self.view_model, search=self.api.search_users)

        self.connection.on_message(self._handle_downstream_message)
        self.connection.add_state_listener(self.ui.on_state_changed)

    def run(self) -> None:
        """Run the client until the user quits."""
        try:
            asyncio.run(self._main())
        except KeyboardInterrupt:
            self.log.info("Interrupted")

    async def _main(self) -> None:
        self.connection.open(self.config.token)
        try:
            await self.ui.run()
        finally:
            await self._do_graceful_shutdown()

    def _handle_downstream_message(self, message: Message) -> None:
        """Store an inbound message and show it if it is new."""
        self.log.debug(
            f"Received message {message.id} from {message.sender_id}"
        )
        if self.store.ingest(message):
            self.ui.on_new_message_received(message)

    async def _do_graceful_shutdown(self) -> None:
        """Shut down the application gracefully."""
        self.log.info("Closing the conversation view...")
        await self.view_model.close()
        self.log.info("Closing the directory session...")
        await self.api.close()
        self.log.info("Bye, bye...")

    def _do_logger_config(self) -> None:
        """Initialize the logger."""
        logger = logging.getLogger("chat-logger")

        # Prepare the formatter
        formatter = logging.Formatter(
            fmt="[%(levelname)s] %(asctime)s %(message)s",
        )

        # Create a rotating file handler
        handler = logging.handlers.RotatingFileHandler(
            filename=self.config.logfile_path,
            maxBytes=self.config.logfile_capacity_kb * 1024,
            backupCount=1,
        )

        # Associate the formatter with the handler...
        handler.setFormatter(formatter)
        # ...and the handler with the logger
        logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.config.debug else logging.INFO)
