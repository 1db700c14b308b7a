"""Test helpers: a deterministic clock and fake socket inspection."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock

from chathub.services.hub import ChatHub


class TickingClock:
    """Returns a strictly increasing time, one step per call."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc), step_seconds: int = 1):
        self.now = start
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


def plug(hub: ChatHub, connection_id: str) -> AsyncMock:
    """Registers a fake socket under a known connection id."""
    websocket = AsyncMock()
    hub.manager.active_connections[connection_id] = websocket
    return websocket


def sent(websocket: AsyncMock, event: str) -> List[Any]:
    """Payloads of every frame with `event` sent to the fake socket."""
    return [call.args[0]["data"] for call in websocket.send_json.await_args_list if call.args[0]["event"] == event]


def events(websocket: AsyncMock) -> List[str]:
    """Event names sent to the fake socket, in order."""
    return [call.args[0]["event"] for call in websocket.send_json.await_args_list]


def last(websocket: AsyncMock, event: str) -> Dict[str, Any]:
    """Most recent payload for `event`."""
    payloads = sent(websocket, event)
    assert payloads, f"no '{event}' frame was sent"
    return payloads[-1]
