"""
WebSocket client transport.

Keeps a connection to the hub alive with bounded reconnection and capped
exponential backoff, and feeds every received frame to a projector.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

from chathub.client.projector import ClientStateProjector
from chathub.core.events import OutboundEvent

logger = logging.getLogger(__name__)


class ChatConnection:
    """Client side of the socket protocol."""

    def __init__(
        self,
        url: str,
        reconnection_attempts: int = 10,
        reconnection_delay: float = 1.0,
        reconnection_delay_max: float = 5.0,
        **projector_options: Any,
    ) -> None:
        self.url = url
        self.reconnection_attempts = reconnection_attempts
        self.reconnection_delay = reconnection_delay
        self.reconnection_delay_max = reconnection_delay_max
        self.projector = ClientStateProjector(self.emit, **projector_options)
        self._outbox: "asyncio.Queue[str]" = asyncio.Queue()
        self._websocket: Optional[Any] = None
        self._closing = False
        self._ever_connected = False

    def emit(self, event: str, data: Any) -> None:
        """
        Queues a frame, sent as soon as a connection is up. Once a connection
        was lost, frames emitted before the next one is up are dropped.
        """
        if self._websocket is None and self._ever_connected:
            logger.debug("Not connected, dropping '%s'", event)
            return
        self._outbox.put_nowait(json.dumps({"event": event, "data": data}))

    def backoff(self, attempt: int) -> float:
        """Delay before reconnection attempt number `attempt` (0-based)."""
        return min(self.reconnection_delay * (2**attempt), self.reconnection_delay_max)

    async def run(self) -> None:
        """
        Connects and processes frames until `close()` is called or the
        reconnection attempts are exhausted.
        """
        attempt = 0
        while not self._closing:
            try:
                async with websockets.connect(self.url) as websocket:
                    self._websocket = websocket
                    self._ever_connected = True
                    attempt = 0
                    self.projector.connected()
                    logger.info("Connected to %s", self.url)
                    await self._pump(websocket)
            except (OSError, WebSocketException) as e:
                logger.warning("Connection to %s lost: %s", self.url, e)
            finally:
                self._websocket = None
                self.projector.disconnected()

            if self._closing:
                break
            if attempt >= self.reconnection_attempts:
                logger.error("Giving up on %s after %d attempts", self.url, attempt)
                break

            delay = self.backoff(attempt)
            attempt += 1
            logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay, attempt, self.reconnection_attempts)
            await asyncio.sleep(delay)

    async def close(self) -> None:
        """Stops the connection loop."""
        self._closing = True
        if self._websocket is not None:
            await self._websocket.close()

    async def _pump(self, websocket: Any) -> None:
        writer = asyncio.create_task(self._write(websocket))
        try:
            async for raw in websocket:
                self.receive(raw)
                if self._closing:
                    break
        finally:
            writer.cancel()
            self._discard_outbox()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    def _discard_outbox(self) -> None:
        """A new socket starts unclaimed, frames queued for the old one are dropped."""
        dropped = 0
        while not self._outbox.empty():
            self._outbox.get_nowait()
            dropped += 1
        if dropped:
            logger.debug("Dropped %d unsent frames", dropped)

    async def _write(self, websocket: Any) -> None:
        while True:
            frame = await self._outbox.get()
            await websocket.send(frame)

    def receive(self, raw: Any) -> None:
        """Applies one raw frame to the projector."""
        try:
            frame = json.loads(raw)
            event, data = frame["event"], frame.get("data")
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Could not parse frame: %s", e)
            return

        self.projector.apply(event, data)

        # A rejected claim ends the session, the user picks another name.
        if event == OutboundEvent.USERNAME_TAKEN.value:
            self._closing = True
