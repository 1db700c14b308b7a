"""
Message Lifecycle Tracker.

Assigns message identity, keeps the private message store and the read
receipts, and applies reaction toggles. It never talks to sockets: operations
return the data the router needs to notify clients.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from chathub.core.errors import UnknownTarget
from chathub.core.events import SendMessagePayload
from chathub.core.message import Message, MessageType, ReadReceipt, utc_now
from chathub.core.user import User
from chathub.services.rooms import RoomStore

logger = logging.getLogger(__name__)


class MessageIdGenerator:
    """
    Wall-clock milliseconds, bumped when needed so ids are strictly
    increasing within the process.
    """

    def __init__(self) -> None:
        self._last = 0

    def next_id(self, now: datetime) -> int:
        """Returns a fresh id for a message created at `now`."""
        candidate = int(now.timestamp() * 1000)
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return candidate


@dataclass(frozen=True)
class ReadNotice:
    """A receipt that must be reported to the message's sender."""

    message_id: int
    sender_id: str
    receipt: ReadReceipt

    def payload(self) -> Dict[str, Any]:
        """Body of the `message_read` event."""
        return {
            "messageId": self.message_id,
            "readBy": {"username": self.receipt.username, "userId": self.receipt.user_id},
            "timestamp": self.receipt.model_dump(mode="json")["timestamp"],
        }


class MessageTracker:
    """Message identity, private messages, reactions and read receipts."""

    def __init__(self, rooms: RoomStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.rooms = rooms
        self._clock = clock
        self._ids = MessageIdGenerator()
        # Not evicted, grows for the lifetime of the process.
        self._private: Dict[int, Message] = {}
        # message id -> reader id -> receipt
        self._receipts: Dict[int, Dict[str, ReadReceipt]] = {}

    def _stamp(self) -> Tuple[int, datetime]:
        """Id and timestamp of a new message. The timestamp follows the id, so both strictly increase."""
        message_id = self._ids.next_id(self._clock())
        return message_id, datetime.fromtimestamp(message_id / 1000, tz=timezone.utc)

    # === Creation ===

    def create_room_message(self, sender: User, payload: SendMessagePayload) -> Message:
        """
        Creates a message in the sender's current room and appends it to the log.
        The payload's tempId is not stored, it only travels back in the ack.
        """
        message_id, now = self._stamp()
        message = Message(
            id=message_id,
            sender_id=sender.id,
            sender=sender.username,
            room=sender.current_room,
            type=payload.type or MessageType.TEXT,
            message=payload.message or "",
            data=payload.data,
            timestamp=now,
        )
        self.rooms.append(sender.current_room, message)
        logger.debug("Message %s from '%s' in room '%s'", message_id, sender.username, sender.current_room)
        return message

    def create_private_message(
        self, sender: User, recipient_id: str, payload: SendMessagePayload
    ) -> Tuple[Message, Message]:
        """
        Creates a 1:1 message. Returns the sender's view (carrying the
        tempId, if any) and the recipient's view. Both share the same id
        and both carry recipientId.
        """
        message_id, now = self._stamp()
        stored = Message(
            id=message_id,
            sender_id=sender.id,
            sender=sender.username,
            is_private=True,
            recipient_id=recipient_id,
            type=payload.type or MessageType.TEXT,
            message=payload.message or "",
            data=payload.data,
            timestamp=now,
        )
        self._private[message_id] = stored

        sender_view = stored.model_copy(deep=True, update={"temp_id": payload.temp_id})
        recipient_view = stored.model_copy(deep=True)
        logger.debug("Private message %s from %s to %s", message_id, sender.id, recipient_id)
        return sender_view, recipient_view

    def private_message(self, message_id: int) -> Optional[Message]:
        """Stored private message, if known."""
        return self._private.get(message_id)

    # === Reactions ===

    def toggle_reaction(self, room: str, message_id: int, username: str, emoji: str) -> Dict[str, List[str]]:
        """
        Adds the user under the emoji, or removes them if already there.
        Empty emoji entries are deleted. Returns the updated reaction map.
        Raises UnknownTarget if the room message does not exist.
        """
        message = self.rooms.get_message(room, message_id)

        reactions = dict(message.reactions or {})
        reactors = list(reactions.get(emoji, []))
        if username in reactors:
            reactors.remove(username)
        else:
            reactors.append(username)

        if reactors:
            reactions[emoji] = reactors
        else:
            reactions.pop(emoji, None)

        message.reactions = reactions or None
        return reactions

    # === Read receipts ===

    def receipts(self, message_id: int) -> Dict[str, ReadReceipt]:
        """Receipts recorded for a message, keyed by reader id."""
        return dict(self._receipts.get(message_id, {}))

    def _resolve(self, message_id: int, room: Optional[str], is_private: bool) -> Optional[Message]:
        if is_private:
            return self._private.get(message_id)
        try:
            return self.rooms.get_message(room, message_id)
        except UnknownTarget:
            return None

    def mark_read(
        self, message_id: int, reader: User, room: Optional[str] = None, is_private: bool = False
    ) -> Optional[ReadNotice]:
        """
        Records that `reader` saw the message. First write wins.

        Returns a notice for the sender, or None when nothing changed: the
        message is unknown, the reader is its author, or a receipt exists.
        """
        message = self._resolve(message_id, room, is_private)
        if message is None or message.sender_id == reader.id:
            return None

        readers = self._receipts.setdefault(message_id, {})
        if reader.id in readers:
            return None

        receipt = ReadReceipt(user_id=reader.id, username=reader.username, timestamp=self._clock())
        readers[reader.id] = receipt
        if not message.is_read_by(reader.id):
            message.read_by.append(receipt)

        return ReadNotice(message_id=message_id, sender_id=message.sender_id, receipt=receipt)

    def mark_room_read(self, room: str, reader: User) -> List[ReadNotice]:
        """Marks every message currently in the room's log."""
        notices = []
        for message in self.rooms.messages(room):
            notice = self.mark_read(message.id, reader, room=room)
            if notice:
                notices.append(notice)
        return notices
