"""
WebSocket Connection Manager.
Owns the live sockets and delivers outbound event frames to them.
"""

import logging
import uuid
from typing import Dict, Iterable, List

from fastapi import WebSocket

from chathub.core.events import Emission

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Live sockets keyed by the connection id assigned at accept time."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accepts a new WebSocket connection and returns its id.
        """
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.active_connections[connection_id] = websocket
        logger.info("WS Connected: %s. Total: %d", connection_id, len(self.active_connections))
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """
        Removes a WebSocket connection
        """
        if self.active_connections.pop(connection_id, None) is not None:
            logger.info("WS Disconnected: %s. Total: %d", connection_id, len(self.active_connections))

    def connection_ids(self) -> List[str]:
        """Ids of every live socket, claimed or not."""
        return list(self.active_connections.keys())

    async def deliver(self, emissions: Iterable[Emission]) -> None:
        """
        Sends each emission to its recipients, in order.
        Unknown or failing recipients are skipped.
        """
        for emission in emissions:
            frame = emission.frame()
            for connection_id in emission.recipients:
                await self.send(connection_id, frame)

    async def send(self, connection_id: str, frame: dict) -> bool:
        """Sends a frame to one connection. Returns False if it could not be sent."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            logger.debug("Dropping '%s' for unknown connection %s", frame.get("event"), connection_id)
            return False

        try:
            await websocket.send_json(frame)
            return True
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Error sending to WS %s: %s", connection_id, e)
            return False
