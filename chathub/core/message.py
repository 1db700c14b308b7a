"""
Define Message structure to ensure consinstency between the hub and its clients.
Wire payloads use camelCase keys, Python code uses snake_case attributes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict, as sent over the socket."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MessageType(str, Enum):
    """Kind of payload carried by a message."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class ReadReceipt(CamelModel):
    """One reader's acknowledgment of a message."""

    user_id: str
    username: str
    timestamp: datetime


class Message(CamelModel):
    """Message structure in the app, used for room and private messages."""

    id: int
    temp_id: Optional[str] = None
    sender_id: str
    sender: str
    room: Optional[str] = None
    is_private: bool = False
    recipient_id: Optional[str] = None
    type: MessageType = MessageType.TEXT
    message: str = ""
    data: Any = None
    timestamp: datetime = Field(default_factory=utc_now)
    # emoji -> usernames, in reaction order
    reactions: Optional[Dict[str, List[str]]] = None
    read_by: List[ReadReceipt] = Field(default_factory=list)

    def is_read_by(self, user_id: str) -> bool:
        """True if a receipt for the user was already appended."""
        return any(receipt.user_id == user_id for receipt in self.read_by)
