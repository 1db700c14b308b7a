"""
Client State Projector.

Mirrors the events pushed by the hub into local state: message list,
presence, typing users, unread counters, and the optimistic send/ack
reconciliation. Outgoing actions go through the `emit` callable, so the
projector does not care which transport carries them.
"""

import asyncio
import logging
import secrets
import time
from itertools import count
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from chathub.client.history import HistoryClient
from chathub.core.events import InboundEvent, OutboundEvent
from chathub.core.message import utc_now

logger = logging.getLogger(__name__)

Emit = Callable[[str, Any], None]

SENDING = "sending"
DELIVERED = "delivered"
READ = "read"


def new_temp_id() -> str:
    """Correlation token for an optimistic message."""
    return f"tmp_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class ClientStateProjector:
    """Local view of the hub, fed exclusively by hub events."""

    def __init__(
        self,
        emit: Emit,
        default_room: str = "general",
        read_delay: float = 0.5,
        room_read_delay: float = 0.1,
    ) -> None:
        self._emit = emit
        self.default_room = default_room
        self.read_delay = read_delay
        self.room_read_delay = room_read_delay
        self._pending_reads: Set[asyncio.TimerHandle] = set()
        self._notice_ids = count(1)
        self._handlers: Dict[str, Callable[[Any], None]] = {
            OutboundEvent.RECEIVE_MESSAGE.value: self._on_receive_message,
            OutboundEvent.PRIVATE_MESSAGE.value: self._on_private_message,
            OutboundEvent.MESSAGE_ACK.value: self._on_message_ack,
            OutboundEvent.MESSAGE_READ.value: self._on_message_read,
            OutboundEvent.MESSAGE_REACTION_UPDATED.value: self._on_reaction_updated,
            OutboundEvent.USER_LIST.value: self._on_user_list,
            OutboundEvent.USER_JOINED.value: self._on_user_joined,
            OutboundEvent.USER_LEFT.value: self._on_user_left,
            OutboundEvent.TYPING_USERS.value: self._on_typing_users,
            OutboundEvent.USERNAME_TAKEN.value: self._on_username_taken,
            OutboundEvent.ROOM_CHANGED.value: self._on_room_changed,
            OutboundEvent.USER_JOINED_ROOM.value: self._on_user_joined_room,
            OutboundEvent.USER_LEFT_ROOM.value: self._on_user_left_room,
            OutboundEvent.AVAILABLE_ROOMS.value: self._on_available_rooms,
        }
        self.is_connected = False
        self.reset()

    def reset(self) -> None:
        """Back to the logged-out state."""
        self.cancel_pending_reads()
        self.connection_id: Optional[str] = None
        self.current_username = ""
        self.username_error = ""
        self.current_room = self.default_room
        self.available_rooms: List[str] = [self.default_room]
        self.messages: List[Dict[str, Any]] = []
        self.users: List[Dict[str, Any]] = []
        self.typing_users: List[str] = []
        self.unread_counts: Dict[str, int] = {}
        self.has_more = True
        self.last_message: Optional[Dict[str, Any]] = None

    # === Transport hooks ===

    def connected(self) -> None:
        """The transport is up. Identity is not re-claimed automatically."""
        self.is_connected = True

    def disconnected(self) -> None:
        """The transport went away, pending read receipts are dropped."""
        self.is_connected = False
        self.connection_id = None
        self.cancel_pending_reads()

    # === Actions ===

    def claim(self, username: str) -> bool:
        """Sends `user_join`. Returns False for blank usernames."""
        self.username_error = ""
        trimmed = (username or "").strip()
        if not trimmed:
            return False
        self.current_username = trimmed
        self._emit(InboundEvent.USER_JOIN.value, trimmed)
        return True

    def send_message(self, text: str, type_: str = "text", data: Any = None) -> str:
        """Shows the message immediately and sends it with a tempId."""
        temp_id = new_temp_id()
        self.messages.append(
            {
                "id": temp_id,
                "tempId": temp_id,
                "message": text,
                "type": type_,
                "data": data,
                "sender": self.current_username or "You",
                "senderId": self.connection_id,
                "timestamp": utc_now().isoformat(),
                "room": self.current_room,
                "status": SENDING,
            }
        )
        self._emit(
            InboundEvent.SEND_MESSAGE.value,
            {"message": text, "type": type_, "data": data, "tempId": temp_id},
        )
        return temp_id

    def send_private_message(self, to: str, text: str, type_: str = "text", data: Any = None) -> str:
        """Optimistic private message, reconciled by tempId when the echo arrives."""
        temp_id = new_temp_id()
        self.messages.append(
            {
                "id": temp_id,
                "tempId": temp_id,
                "message": text,
                "type": type_,
                "data": data,
                "sender": self.current_username or "You",
                "senderId": self.connection_id,
                "recipientId": to,
                "timestamp": utc_now().isoformat(),
                "isPrivate": True,
                "status": SENDING,
            }
        )
        self._emit(
            InboundEvent.PRIVATE_MESSAGE.value,
            {"to": to, "message": text, "type": type_, "data": data, "tempId": temp_id},
        )
        return temp_id

    def set_typing(self, is_typing: bool) -> None:
        self._emit(InboundEvent.TYPING.value, bool(is_typing))

    def join_room(self, room: str) -> None:
        self._emit(InboundEvent.JOIN_ROOM.value, room)

    def leave_room(self, room: str) -> None:
        self._emit(InboundEvent.LEAVE_ROOM.value, room)

    def add_reaction(self, message_id: int, room: str, reaction: str) -> None:
        self._emit(InboundEvent.ADD_REACTION.value, {"messageId": message_id, "room": room, "reaction": reaction})

    def mark_room_as_read(self, room: str) -> None:
        """Clears the local counter and records receipts on the hub."""
        self.unread_counts[room] = 0
        self._emit(InboundEvent.MARK_ROOM_READ.value, {"room": room})

    # === Views ===

    def room_messages(self, room: Optional[str] = None) -> List[Dict[str, Any]]:
        """Non-private messages of a room (default: the current one) plus system notices."""
        room = room or self.current_room
        return [m for m in self.messages if m.get("system") or (not m.get("isPrivate") and m.get("room") == room)]

    def private_thread(self, peer_id: str) -> List[Dict[str, Any]]:
        """Private messages exchanged with one peer."""
        me = self.connection_id
        return [
            m
            for m in self.messages
            if m.get("isPrivate")
            and (
                (m.get("senderId") == me and m.get("recipientId") == peer_id)
                or (m.get("senderId") == peer_id and m.get("recipientId") == me)
            )
        ]

    # === History ===

    async def fetch_older_messages(self, history: HistoryClient, limit: int = 20) -> int:
        """
        Prepends the page preceding the oldest loaded message.
        Returns how many messages were added.
        """
        dated = [m for m in self.messages if not m.get("system") and m.get("timestamp")]
        before = dated[0]["timestamp"] if dated else utc_now().isoformat()
        try:
            older, has_more = await history.get_messages(self.current_room, before=before, limit=limit)
        except httpx.HTTPError as e:
            logger.warning("Could not load older messages for '%s': %s", self.current_room, e)
            return 0

        known = {m.get("id") for m in self.messages}
        fresh = [m for m in older if m.get("id") not in known]
        self.messages = fresh + self.messages
        self.has_more = has_more
        return len(fresh)

    # === Inbound events ===

    def apply(self, event: str, data: Any) -> None:
        """Folds one hub event into the local state. Unknown events are ignored."""
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Ignoring unknown event '%s'", event)
            return
        handler(data)

    def _index(self, key: str, value: Any) -> int:
        for i, message in enumerate(self.messages):
            if message.get(key) == value:
                return i
        return -1

    def _notice(self, text: str) -> None:
        self.messages.append(
            {
                "id": f"system_{next(self._notice_ids)}",
                "system": True,
                "message": text,
                "timestamp": utc_now().isoformat(),
            }
        )

    def _on_receive_message(self, message: Dict[str, Any]) -> None:
        self.last_message = message
        existing = self._index("id", message.get("id"))
        if existing >= 0:
            self.messages[existing] = {**self.messages[existing], **message}
        else:
            self.messages.append(message)

        room = message.get("room")
        if room and room != self.current_room:
            self.unread_counts[room] = self.unread_counts.get(room, 0) + 1
        elif room and message.get("senderId") != self.connection_id and not message.get("isPrivate"):
            self._schedule_read(message["id"], room, False, self.read_delay)

    def _on_message_ack(self, ack: Dict[str, Any]) -> None:
        optimistic = self._index("tempId", ack.get("tempId"))
        if optimistic < 0:
            return

        echo = self._index("id", ack.get("id"))
        if echo >= 0 and echo != optimistic:
            # The broadcast copy arrived first, it replaces the optimistic one.
            if self.messages[echo].get("status") != READ:
                self.messages[echo]["status"] = DELIVERED
            del self.messages[optimistic]
        else:
            self.messages[optimistic].update({"id": ack.get("id"), "status": DELIVERED})

    def _on_private_message(self, message: Dict[str, Any]) -> None:
        self.last_message = message
        private = {**message, "isPrivate": True}
        private.setdefault("recipientId", self.connection_id)

        temp_id = private.get("tempId")
        optimistic = self._index("tempId", temp_id) if temp_id else -1
        if optimistic >= 0:
            self.messages[optimistic] = {**private, "status": DELIVERED}
        else:
            existing = self._index("id", private.get("id"))
            if existing >= 0:
                self.messages[existing] = {**self.messages[existing], **private}
            else:
                self.messages.append(private)

        if private.get("senderId") != self.connection_id:
            self._schedule_read(private["id"], None, True, self.read_delay)

    def _on_message_read(self, notice: Dict[str, Any]) -> None:
        reader = notice.get("readBy") or {}
        for message in self.messages:
            if message.get("id") != notice.get("messageId"):
                continue
            read_by = message.setdefault("readBy", [])
            if not any(r.get("userId") == reader.get("userId") for r in read_by):
                read_by.append(reader)
                message["status"] = READ

    def _on_reaction_updated(self, update: Dict[str, Any]) -> None:
        for message in self.messages:
            if message.get("id") == update.get("messageId"):
                message["reactions"] = update.get("reactions") or {}

    def _learn_identity(self, user: Dict[str, Any]) -> None:
        if self.connection_id is None and self.current_username:
            if str(user.get("username", "")).lower() == self.current_username.lower():
                self.connection_id = user.get("id")

    def _on_user_list(self, users: List[Dict[str, Any]]) -> None:
        self.users = list(users)
        for user in self.users:
            self._learn_identity(user)

    def _on_user_joined(self, user: Dict[str, Any]) -> None:
        self._learn_identity(user)
        self._notice(f"{user.get('username')} joined the chat")

    def _on_user_left(self, user: Dict[str, Any]) -> None:
        self._notice(f"{user.get('username')} left the chat")

    def _on_typing_users(self, usernames: List[str]) -> None:
        self.typing_users = list(usernames)

    def _on_username_taken(self, error: Dict[str, Any]) -> None:
        logger.info("Username rejected: %s", error.get("message"))
        self.username_error = error.get("message", "")
        self.current_username = ""
        self.connection_id = None
        self.is_connected = False

    def _on_room_changed(self, change: Dict[str, Any]) -> None:
        self.cancel_pending_reads()
        room = change.get("room") or self.default_room
        self.current_room = room
        self.messages = list(change.get("messages") or [])
        self.unread_counts[room] = 0
        self.has_more = True

        for message in self.messages:
            if message.get("id") and message.get("senderId") != self.connection_id and not message.get("isPrivate"):
                self._schedule_read(message["id"], room, False, self.room_read_delay)

    def _on_user_joined_room(self, data: Dict[str, Any]) -> None:
        self._notice(f"{data.get('username')} joined {data.get('room')}")

    def _on_user_left_room(self, data: Dict[str, Any]) -> None:
        self._notice(f"{data.get('username')} left {data.get('room')}")

    def _on_available_rooms(self, rooms: List[str]) -> None:
        self.available_rooms = list(rooms)

    # === Read receipt timers ===

    def _schedule_read(self, message_id: Any, room: Optional[str], is_private: bool, delay: float) -> None:
        """
        Emits `mark_message_read` after `delay` seconds, simulating the user
        looking at the message. Without a running loop it is sent at once.
        """
        payload = {"messageId": message_id, "room": room, "isPrivate": is_private}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._emit(InboundEvent.MARK_MESSAGE_READ.value, payload)
            return

        def fire() -> None:
            self._pending_reads.discard(handle)
            self._emit(InboundEvent.MARK_MESSAGE_READ.value, payload)

        handle = loop.call_later(delay, fire)
        self._pending_reads.add(handle)

    @property
    def pending_reads(self) -> int:
        """Number of read receipts waiting for their timer."""
        return len(self._pending_reads)

    def cancel_pending_reads(self) -> None:
        """Drops every scheduled read receipt (room switch, logout)."""
        for handle in self._pending_reads:
            handle.cancel()
        self._pending_reads.clear()
