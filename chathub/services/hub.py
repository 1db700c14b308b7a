"""
Hub container, wires the stores, the transport and the router together
in a structured and coherent object.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from chathub.config.settings import Settings, settings
from chathub.core.message import utc_now
from chathub.services.registry import ConnectionRegistry
from chathub.services.rooms import RoomStore
from chathub.services.router import EventRouter
from chathub.services.tracker import MessageTracker
from chathub.services.websocket import ConnectionManager

logger = logging.getLogger(__name__)


class ChatHub:
    """
    Owns one set of stores. The app factory creates one per application,
    tests create as many as they need.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or settings
        self.registry = ConnectionRegistry(
            default_room=self.config.default_room,
            min_length=self.config.username_min_length,
            max_length=self.config.username_max_length,
        )
        self.rooms = RoomStore(catalog=self.config.rooms, history_limit=self.config.room_history_limit)
        self.tracker = MessageTracker(self.rooms, clock=clock)
        self.manager = ConnectionManager()
        self.router = EventRouter(self.registry, self.rooms, self.tracker, self.manager)

        # The default room always exists.
        self.rooms.ensure_room(self.config.default_room)

    def page_limit(self, requested: Optional[int]) -> int:
        """Clamps a pagination limit to the configured bounds."""
        if requested is None:
            return self.config.page_default_limit
        return max(1, min(requested, self.config.page_max_limit))

    async def shutdown(self) -> None:
        """Closes every live socket. State is volatile and simply dropped."""
        logger.info("Closing %d connections...", len(self.manager.active_connections))
        for connection_id in self.manager.connection_ids():
            websocket = self.manager.active_connections.get(connection_id)
            self.manager.disconnect(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.close()
            except RuntimeError as e:
                logger.debug("Socket %s already closed: %s", connection_id, e)
        logger.info("Hub shutdown complete.")
