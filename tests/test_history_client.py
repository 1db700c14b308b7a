"""
Unit tests for the HistoryClient.
Uses httpx.MockTransport so no server is needed.
"""

import httpx
import pytest

from chathub.client.history import HistoryClient


def make_client(handler) -> HistoryClient:
    """HistoryClient whose requests are answered by `handler`."""
    return HistoryClient("http://hub.test/", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_messages_sends_cursor_and_limit():
    """The page request targets /api/messages/{room} with the cursor."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"messages": [{"id": 1}, {"id": 2}], "hasMore": True})

    async with make_client(handler) as client:
        messages, has_more = await client.get_messages("tech", before="2024-01-01T00:00:10+00:00", limit=5)

    assert messages == [{"id": 1}, {"id": 2}]
    assert has_more is True
    assert seen[0].url.path == "/api/messages/tech"
    assert seen[0].url.params["limit"] == "5"
    assert seen[0].url.params["before"] == "2024-01-01T00:00:10+00:00"


@pytest.mark.asyncio
async def test_get_messages_without_cursor():
    """No `before` parameter on the first page."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"messages": [], "hasMore": False})

    async with make_client(handler) as client:
        assert await client.get_messages("general") == ([], False)

    assert "before" not in seen[0].url.params
    assert seen[0].url.params["limit"] == "20"


@pytest.mark.asyncio
async def test_get_messages_raises_on_server_error():
    """Status errors propagate to the caller."""

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async with make_client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.get_messages("general")


@pytest.mark.asyncio
async def test_search_returns_matches():
    """The query goes in `q`."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": 3, "message": "hello"}])

    async with make_client(handler) as client:
        assert await client.search("general", "hello") == [{"id": 3, "message": "hello"}]

    assert seen[0].url.path == "/api/messages/general/search"
    assert seen[0].url.params["q"] == "hello"


@pytest.mark.asyncio
async def test_search_empty_query_skips_request():
    """An empty query never hits the network."""

    def handler(_request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with make_client(handler) as client:
        assert await client.search("general", "") == []


@pytest.mark.asyncio
async def test_search_failure_yields_empty_result(caplog):
    """Transport errors are logged and swallowed."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with make_client(handler) as client:
        assert await client.search("general", "hello") == []

    assert "Search in 'general' failed" in caplog.text


@pytest.mark.asyncio
async def test_users_and_rooms():
    """Presence and catalog are returned as JSON."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/users":
            return httpx.Response(200, json=[{"id": "c1", "username": "alice", "currentRoom": "general"}])
        return httpx.Response(200, json=["general", "tech"])

    async with make_client(handler) as client:
        assert (await client.get_users())[0]["username"] == "alice"
        assert await client.get_rooms() == ["general", "tech"]
