"""
REST client for the hub's history, search, presence and room endpoints.
"""

import logging
from types import TracebackType
from typing import Any, Dict, List, Optional, Tuple, Type

import httpx

logger = logging.getLogger(__name__)


class HistoryClient:
    """Thin async wrapper over the `/api` REST surface."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        # Ensure we don't double-slash if base_url has trailing slash
        self._client = httpx.AsyncClient(base_url=f"{base_url.rstrip('/')}/api", timeout=timeout, transport=transport)

    async def __aenter__(self) -> "HistoryClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Closes the underlying HTTP client."""
        await self._client.aclose()

    async def get_messages(
        self, room: str, before: Optional[str] = None, limit: int = 20
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Fetches the page of messages preceding `before` (ISO-8601).
        Returns the messages (oldest first) and whether older ones remain.
        Raises httpx.HTTPError on transport or status errors.
        """
        params: Dict[str, Any] = {"limit": limit}
        if before:
            params["before"] = before

        response = await self._client.get(f"/messages/{room}", params=params)
        response.raise_for_status()
        data = response.json()
        return list(data.get("messages", [])), bool(data.get("hasMore"))

    async def search(self, room: str, query: str) -> List[Dict[str, Any]]:
        """Searches a room's messages. Failures yield an empty result."""
        if not query:
            return []
        try:
            response = await self._client.get(f"/messages/{room}/search", params={"q": query})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Search in '%s' failed: %s", room, e)
            return []

        data = response.json()
        return data if isinstance(data, list) else []

    async def get_users(self) -> List[Dict[str, Any]]:
        """Current presence list."""
        response = await self._client.get("/users")
        response.raise_for_status()
        return response.json()

    async def get_rooms(self) -> List[str]:
        """Room catalog."""
        response = await self._client.get("/rooms")
        response.raise_for_status()
        return response.json()
