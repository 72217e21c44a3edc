"""Session-wide cache of user profiles."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

import aiohttp

from chat_common.messages import ChatMessageException, User, UserId

ProfileFetcher = Callable[[UserId], Awaitable[User]]


class DirectoryCache:
    """Resolve user ids to profiles, fetching each id at most once.

    Concurrent lookups of an id that is still being fetched share the
    same fetch. A failed fetch is forgotten so the id can be retried.
    Profiles never expire.
    """

    def __init__(self, fetch: ProfileFetcher) -> None:
        """Construct a cache around a profile fetcher."""
        self.log = logging.getLogger("chat-logger")
        self._fetch = fetch
        self._profiles: Dict[UserId, User] = {}
        self._in_flight: Dict[UserId, asyncio.Task] = {}

    def peek(self, user_id: UserId) -> Optional[User]:
        """Return a cached profile without fetching it."""
        return self._profiles.get(user_id)

    def prime(self, users: Iterable[User]) -> None:
        """Cache profiles obtained elsewhere, e.g. from a search."""
        for user in users:
            self._profiles.setdefault(user.id, user)

    async def resolve(self, user_id: UserId) -> Optional[User]:
        """Return the profile of a user, or None if it cannot be fetched."""
        profile = self._profiles.get(user_id)
        if profile is not None:
            return profile

        task = self._in_flight.get(user_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_cache(user_id))
            self._in_flight[user_id] = task
        # A cancelled caller must not cancel the fetch shared with others
        return await asyncio.shield(task)

    async def _fetch_and_cache(self, user_id: UserId) -> Optional[User]:
        try:
            profile = await self._fetch(user_id)
        except (
            aiohttp.ClientError,
            asyncio.TimeoutError,
            ChatMessageException,
        ) as e:
            self.log.warning(
                f"Failed to fetch profile of '{user_id}'"
                + f" ({type(e).__name__}): {e}"
            )
            return None
        else:
            self._profiles[user_id] = profile
            return profile
        finally:
            self._in_flight.pop(user_id, None)
