"""Clientside message store.

Hold every message observed during the session. Messages are
deduplicated by id and kept per conversation pair in chronological
order. Messages with equal timestamps keep the order they were ingested
in, so near-simultaneous messages never swap places between renders.
"""

import bisect
import logging
from operator import attrgetter
from typing import Dict, List, Optional, Set

from chat_common.messages import (
    ConversationPair,
    Message,
    MessageId,
    UserId,
    conversation_pair,
)

_sent_at = attrgetter("sent_at")


class MessageStore:
    """Deduplicated, time-ordered store of direct messages."""

    def __init__(self) -> None:
        """Construct an empty store."""
        self.log = logging.getLogger("chat-logger")
        self._ids: Set[MessageId] = set()
        self._conversations: Dict[ConversationPair, List[Message]] = {}

    def __len__(self) -> int:
        """Count stored messages."""
        return len(self._ids)

    def __contains__(self, message_id: object) -> bool:
        """Check if a message id has been seen."""
        return message_id in self._ids

    def ingest(self, message: Message) -> bool:
        """Insert a message unless its id has already been seen.

        Return True if the message was inserted.
        """
        if message.id in self._ids:
            self.log.debug(f"Ignoring duplicate message {message.id}")
            return False

        self._ids.add(message.id)
        conversation = self._conversations.setdefault(message.pair, [])
        # insort_right puts the message after any with an equal timestamp
        bisect.insort_right(conversation, message, key=_sent_at)
        return True

    def project_conversation(
        self, user_a: UserId, user_b: UserId
    ) -> List[Message]:
        """Return the messages exchanged between two users, oldest first."""
        pair = conversation_pair(user_a, user_b)
        return list(self._conversations.get(pair, ()))

    def last_message(self, user_a: UserId, user_b: UserId) -> Optional[Message]:
        """Return the latest message exchanged between two users."""
        conversation = self._conversations.get(conversation_pair(user_a, user_b))
        return conversation[-1] if conversation else None

    def correspondents(self, user_id: UserId) -> List[UserId]:
        """Return everyone who exchanged messages with a user.

        The most recently active correspondent comes first.
        """
        latest = []
        for pair, conversation in self._conversations.items():
            if user_id not in pair:
                continue
            others = pair - {user_id}
            # A user messaging themselves is their own correspondent
            other = next(iter(others)) if others else user_id
            latest.append((conversation[-1].sent_at, other))
        latest.sort(key=lambda entry: entry[0], reverse=True)
        return [other for _, other in latest]
