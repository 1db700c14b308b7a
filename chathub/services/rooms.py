"""
Room Store: bounded per-room message logs, explicit room membership
and per-connection typing state.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from chathub.config.settings import settings
from chathub.core.errors import UnknownTarget
from chathub.core.message import Message
from chathub.core.user import TypingState

logger = logging.getLogger(__name__)


class RoomStore:
    """In-memory rooms. Rooms are created lazily and never deleted."""

    def __init__(
        self,
        catalog: Optional[Iterable[str]] = None,
        history_limit: int = settings.room_history_limit,
    ) -> None:
        self._catalog: List[str] = list(catalog if catalog is not None else settings.rooms)
        self.history_limit = history_limit
        self._logs: Dict[str, Deque[Message]] = {}
        self._members: Dict[str, Set[str]] = {}
        self._typing: Dict[str, TypingState] = {}

    # === Catalog and logs ===

    def catalog(self) -> List[str]:
        """Discoverable rooms, in startup order. Ad hoc rooms are not listed."""
        return list(self._catalog)

    def ensure_room(self, room: str) -> Deque[Message]:
        """Returns the room's log, creating it on first reference."""
        if room not in self._logs:
            self._logs[room] = deque(maxlen=self.history_limit)
            logger.debug("Created message log for room '%s'", room)
        return self._logs[room]

    def has_room(self, room: str) -> bool:
        """True once the room's log exists."""
        return room in self._logs

    def append(self, room: str, message: Message) -> Message:
        """
        Pushes to the tail of the log.
        Once the cap is reached the oldest message is evicted (FIFO).
        """
        log = self.ensure_room(room)
        if len(log) == log.maxlen:
            logger.debug("Room '%s' at capacity, evicting message %s", room, log[0].id)
        log.append(message)
        return message

    def messages(self, room: str) -> List[Message]:
        """Snapshot of the room's log, oldest first."""
        return list(self._logs.get(room, ()))

    def get_message(self, room: Optional[str], message_id: int) -> Message:
        """Raises UnknownTarget if the room or the message is unknown."""
        if room is not None:
            for message in self._logs.get(room, ()):
                if message.id == message_id:
                    return message
        raise UnknownTarget(f"Message {message_id} not found in room '{room}'")

    # === Membership ===

    def add_member(self, room: str, connection_id: str) -> None:
        """Adds the connection to the room's member set."""
        self._members.setdefault(room, set()).add(connection_id)

    def remove_member(self, room: str, connection_id: str) -> None:
        """Removes the connection from the room, no-op if absent."""
        self._members.get(room, set()).discard(connection_id)

    def members(self, room: str) -> Set[str]:
        """Connections currently in the room."""
        return set(self._members.get(room, set()))

    def drop_connection(self, connection_id: str) -> None:
        """Forgets every membership and the typing state of a connection."""
        for members in self._members.values():
            members.discard(connection_id)
        self.clear_typing(connection_id)

    # === Typing ===

    def set_typing(self, connection_id: str, username: str, room: str) -> None:
        """Marks the connection as typing in a room."""
        self._typing[connection_id] = TypingState(username=username, room=room)

    def clear_typing(self, connection_id: str) -> None:
        """Removes the typing state, no-op if absent."""
        self._typing.pop(connection_id, None)

    def typing_users(self, room: str) -> List[str]:
        """Usernames currently typing in the room."""
        return [state.username for state in self._typing.values() if state.room == room]

    # === History queries ===

    def page(
        self, room: str, before: Optional[datetime] = None, limit: int = settings.page_default_limit
    ) -> Tuple[List[Message], bool]:
        """
        Returns up to `limit` messages strictly older than `before`
        (the most recent ones), in ascending order, and whether even older
        messages remain in the log.
        """
        log = self.messages(room)
        cursor = _as_utc(before) if before else None

        older = [msg for msg in log if cursor is None or msg.timestamp < cursor]
        older.sort(key=lambda msg: msg.timestamp)
        batch = older[-limit:] if limit > 0 else []

        oldest = batch[0].timestamp if batch else cursor
        if oldest is None:
            has_more = False
        else:
            has_more = any(msg.timestamp < oldest for msg in log)
        return batch, has_more

    def search(self, room: str, query: str, limit: int = settings.search_limit) -> List[Message]:
        """Case-insensitive substring match on message text, most recent `limit` matches."""
        needle = query.lower()
        if not needle:
            return []
        matches = [msg for msg in self.messages(room) if needle in (msg.message or "").lower()]
        return matches[-limit:]


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
