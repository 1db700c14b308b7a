"""
Connection Registry: maps live connections to claimed identities.
Single source of truth for presence.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from chathub.config.settings import settings
from chathub.core.errors import InvalidUsername, UsernameTaken
from chathub.core.user import User

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Keeps the users claimed by live connections, keyed by connection id."""

    def __init__(
        self,
        default_room: str = settings.default_room,
        min_length: int = settings.username_min_length,
        max_length: int = settings.username_max_length,
    ) -> None:
        self.default_room = default_room
        self.min_length = min_length
        self.max_length = max_length
        self._users: Dict[str, User] = {}

    def validate_username(self, raw_username: Any) -> str:
        """
        Returns the trimmed username.
        Raises InvalidUsername when it is missing or out of length bounds.
        """
        if not raw_username or not isinstance(raw_username, str):
            raise InvalidUsername("Username is required.")

        username = raw_username.strip()
        if not self.min_length <= len(username) <= self.max_length:
            raise InvalidUsername(
                f"Username must be between {self.min_length} and {self.max_length} characters."
            )
        return username

    def claim(self, connection_id: str, raw_username: Any) -> Tuple[User, Optional[User]]:
        """
        Registers a username for the connection.

        A prior identity held by the same connection is dropped before the
        uniqueness check, so a reconnecting or renaming client never collides
        with itself. Returns the new user and the dropped one (if any).
        """
        username = self.validate_username(raw_username)

        previous = self.release(connection_id)
        if previous:
            logger.info("Dropped previous identity '%s' of %s", previous.username, connection_id)

        if self.is_taken(username, exclude=connection_id):
            logger.info("Username '%s' already taken, rejected for %s", username, connection_id)
            raise UsernameTaken("Username already taken. Please choose another.")

        user = User(id=connection_id, username=username, current_room=self.default_room)
        self._users[connection_id] = user
        logger.info("User '%s' claimed by %s", username, connection_id)
        return user, previous

    def is_taken(self, username: str, exclude: Optional[str] = None) -> bool:
        """Case-insensitive check against every other claimed connection."""
        wanted = username.lower()
        return any(
            user.username.lower() == wanted for conn_id, user in self._users.items() if conn_id != exclude
        )

    def release(self, connection_id: str) -> Optional[User]:
        """Removes the user, safe on unknown ids."""
        return self._users.pop(connection_id, None)

    def lookup(self, connection_id: str) -> Optional[User]:
        """Returns the user claimed by the connection, if any."""
        return self._users.get(connection_id)

    def users(self) -> List[User]:
        """Presence list, in claim order."""
        return list(self._users.values())

    def __len__(self) -> int:
        return len(self._users)
