"""HTTP client of the marketplace user directory."""

from typing import Any, Dict, List, Optional

import aiohttp

from chat_common.messages import (
    ChatDeserializationError,
    User,
    UserId,
    decode_user,
)

DEFAULT_TIMEOUT_S = 10


class DirectoryAPI:
    """Read-only access to user profiles."""

    def __init__(
        self,
        base_url: str,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Construct a client authenticating with a bearer token."""
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._session = session

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=DEFAULT_TIMEOUT_S)
            )
        return self._session

    async def fetch_user(self, user_id: UserId) -> User:
        """Fetch the profile of a single user."""
        session = self._get_session()
        async with session.get(
            f"{self.base_url}/user/{user_id}", headers=self._headers()
        ) as resp:
            resp.raise_for_status()
            return decode_user(await _read_json(resp))

    async def search_users(self, query: str = "") -> List[User]:
        """Search users whose name matches a query."""
        session = self._get_session()
        async with session.get(
            f"{self.base_url}/user/search",
            params={"query": query},
            headers=self._headers(),
        ) as resp:
            resp.raise_for_status()
            records = await _read_json(resp)
        if not isinstance(records, list):
            raise ChatDeserializationError("Search result is not a list")
        return [decode_user(record) for record in records]

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None


async def _read_json(resp: aiohttp.ClientResponse) -> Any:
    try:
        return await resp.json()
    except ValueError:
        raise ChatDeserializationError("Directory response is not valid JSON")
