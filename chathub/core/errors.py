"""
Hub error taxonomy.

Only username errors reach the client (as a `username_taken` event),
everything else is resolved as a silent no-op by the router.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for hub errors."""

    default_message = "Chat error."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidUsername(ChatError):
    """Username missing, not a string, or out of the allowed length."""

    default_message = "Username is required."


class UsernameTaken(ChatError):
    """Another connection already holds the username (case-insensitive)."""

    default_message = "Username already taken. Please choose another."


class UnknownTarget(ChatError):
    """Operation referenced an unclaimed connection, room or message."""

    default_message = "Unknown target."
