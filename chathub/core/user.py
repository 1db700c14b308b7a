"""Presence models: claimed users and their typing state"""

from dataclasses import dataclass

from chathub.core.message import CamelModel


class User(CamelModel):
    """Represents a connection that claimed a display name."""

    # Connection id, doubles as the user id
    id: str
    username: str
    current_room: str = "general"


@dataclass
class TypingState:
    """
    Kept per connection while its user is typing.
    """

    username: str
    room: str
