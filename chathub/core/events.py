"""
Socket protocol: event names, frame envelope and inbound payload schemas.

Every frame, in both directions, is a JSON object `{"event": ..., "data": ...}`.
Event names are part of the public contract and must not change.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, StrictBool, StringConstraints, TypeAdapter

from chathub.core.message import CamelModel, MessageType


class InboundEvent(str, Enum):
    """Events sent by clients."""

    USER_JOIN = "user_join"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SEND_MESSAGE = "send_message"
    PRIVATE_MESSAGE = "private_message"
    TYPING = "typing"
    ADD_REACTION = "add_reaction"
    MARK_MESSAGE_READ = "mark_message_read"
    MARK_ROOM_READ = "mark_room_read"


class OutboundEvent(str, Enum):
    """Events pushed by the hub."""

    USERNAME_TAKEN = "username_taken"
    USER_LIST = "user_list"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    AVAILABLE_ROOMS = "available_rooms"
    ROOM_CHANGED = "room_changed"
    USER_JOINED_ROOM = "user_joined_room"
    USER_LEFT_ROOM = "user_left_room"
    RECEIVE_MESSAGE = "receive_message"
    PRIVATE_MESSAGE = "private_message"
    TYPING_USERS = "typing_users"
    MESSAGE_ACK = "message_ack"
    MESSAGE_REACTION_UPDATED = "message_reaction_updated"
    MESSAGE_READ = "message_read"


class Frame(BaseModel):
    """Envelope of a single socket frame."""

    event: str
    data: Any = None


@dataclass(frozen=True)
class Emission:
    """
    An outbound event with its payload already serialized and its
    recipients already resolved, ready to be delivered.
    """

    event: OutboundEvent
    data: Any
    recipients: Tuple[str, ...]

    def frame(self) -> Dict[str, Any]:
        """Wire representation of the event."""
        return {"event": self.event.value, "data": self.data}


# === Inbound payloads ===

# `join_room` / `leave_room` carry a bare room name, `typing` a bare flag.
RoomName = TypeAdapter(Annotated[str, StringConstraints(min_length=1)])
TypingFlag = TypeAdapter(StrictBool)


class SendMessagePayload(CamelModel):
    """Payload of `send_message`."""

    message: Optional[str] = ""
    type: Optional[MessageType] = None
    data: Any = None
    temp_id: Optional[str] = None


class PrivateMessagePayload(SendMessagePayload):
    """Payload of `private_message`, `to` is the recipient's connection id."""

    to: str


class ReactionPayload(CamelModel):
    """Payload of `add_reaction`."""

    message_id: int
    room: str
    reaction: str = Field(min_length=1)


class MarkReadPayload(CamelModel):
    """Payload of `mark_message_read`."""

    message_id: int
    room: Optional[str] = None
    is_private: bool = False


class MarkRoomReadPayload(CamelModel):
    """Payload of `mark_room_read`."""

    room: str
