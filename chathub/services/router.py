"""
Event Router: the socket protocol dispatcher.

Each inbound event is handled synchronously: stores are mutated, outbound
payloads are serialized and their recipients resolved before anything is
awaited. Delivery happens afterwards through the ConnectionManager, so one
event's mutations never interleave with another's.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from chathub.core.errors import InvalidUsername, UnknownTarget, UsernameTaken
from chathub.core.events import (
    Emission,
    InboundEvent,
    MarkReadPayload,
    MarkRoomReadPayload,
    OutboundEvent,
    PrivateMessagePayload,
    ReactionPayload,
    RoomName,
    SendMessagePayload,
    TypingFlag,
)
from chathub.core.user import User
from chathub.services.registry import ConnectionRegistry
from chathub.services.rooms import RoomStore
from chathub.services.tracker import MessageTracker, ReadNotice
from chathub.services.websocket import ConnectionManager

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], List[Emission]]


class EventRouter:
    """Routes inbound events to the stores and fans out the resulting events."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomStore,
        tracker: MessageTracker,
        manager: ConnectionManager,
    ) -> None:
        self.registry = registry
        self.rooms = rooms
        self.tracker = tracker
        self.manager = manager
        self._handlers: Dict[str, Handler] = {
            InboundEvent.USER_JOIN.value: self.on_user_join,
            InboundEvent.JOIN_ROOM.value: self.on_join_room,
            InboundEvent.LEAVE_ROOM.value: self.on_leave_room,
            InboundEvent.SEND_MESSAGE.value: self.on_send_message,
            InboundEvent.PRIVATE_MESSAGE.value: self.on_private_message,
            InboundEvent.TYPING.value: self.on_typing,
            InboundEvent.ADD_REACTION.value: self.on_add_reaction,
            InboundEvent.MARK_MESSAGE_READ.value: self.on_mark_message_read,
            InboundEvent.MARK_ROOM_READ.value: self.on_mark_room_read,
        }

    # === Entry points ===

    async def dispatch(self, connection_id: str, event: str, data: Any) -> None:
        """Handles one inbound event and delivers what it produced."""
        emissions = self.handle(connection_id, event, data)
        await self.manager.deliver(emissions)

    def handle(self, connection_id: str, event: str, data: Any) -> List[Emission]:
        """
        Runs the handler for `event` to completion.
        Malformed or precondition-failing events produce nothing.
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Unknown event '%s' from %s", event, connection_id)
            return []

        try:
            return handler(connection_id, data)
        except (ValidationError, UnknownTarget) as e:
            logger.debug("Dropped '%s' from %s: %s", event, connection_id, e)
            return []

    async def disconnect(self, connection_id: str) -> None:
        """Transport loss: forgets the socket and everything it held."""
        self.manager.disconnect(connection_id)
        emissions = self.on_disconnect(connection_id)
        await self.manager.deliver(emissions)

    # === Targets ===

    def _everyone(self) -> tuple[str, ...]:
        return tuple(self.manager.connection_ids())

    def _room(self, room: str, exclude: Optional[str] = None) -> tuple[str, ...]:
        return tuple(sorted(conn for conn in self.rooms.members(room) if conn != exclude))

    def _require_user(self, connection_id: str) -> User:
        user = self.registry.lookup(connection_id)
        if user is None:
            raise UnknownTarget(f"Connection {connection_id} has not claimed a username")
        return user

    def _presence(self) -> Emission:
        users = [user.to_wire() for user in self.registry.users()]
        return Emission(OutboundEvent.USER_LIST, users, self._everyone())

    def _read_receipt(self, notice: ReadNotice) -> Emission:
        return Emission(OutboundEvent.MESSAGE_READ, notice.payload(), (notice.sender_id,))

    def _read_receipts(self, notices: Iterable[ReadNotice]) -> List[Emission]:
        return [self._read_receipt(notice) for notice in notices]

    def _forget(self, connection_id: str, previous: Optional[User]) -> List[Emission]:
        """Cleanup after a connection's prior identity was released."""
        if previous is None:
            return []
        self.rooms.drop_connection(connection_id)
        return [self._presence()]

    # === Handlers ===

    def on_user_join(self, connection_id: str, data: Any) -> List[Emission]:
        """
        Claims a username, or answers `username_taken` to the claimer.
        A prior identity of the connection is released and announced gone
        before the new name is checked.
        """
        try:
            username = self.registry.validate_username(data)
        except InvalidUsername as e:
            return [Emission(OutboundEvent.USERNAME_TAKEN, {"message": e.message}, (connection_id,))]

        emissions = self._forget(connection_id, self.registry.release(connection_id))
        try:
            user, _ = self.registry.claim(connection_id, username)
        except UsernameTaken as e:
            emissions.append(Emission(OutboundEvent.USERNAME_TAKEN, {"message": e.message}, (connection_id,)))
            return emissions

        self.rooms.ensure_room(user.current_room)
        self.rooms.add_member(user.current_room, connection_id)

        everyone = self._everyone()
        emissions.extend(
            [
                self._presence(),
                Emission(OutboundEvent.USER_JOINED, {"username": user.username, "id": user.id}, everyone),
                Emission(OutboundEvent.AVAILABLE_ROOMS, self.rooms.catalog(), everyone),
            ]
        )
        logger.info("%s joined the chat", user.username)
        return emissions

    def on_join_room(self, connection_id: str, data: Any) -> List[Emission]:
        """
        Moves the user to another room. Joining the current room again runs
        the whole sequence, read-marking included.
        """
        user = self._require_user(connection_id)
        room = RoomName.validate_python(data)

        previous_room = user.current_room
        self.rooms.remove_member(previous_room, connection_id)
        self.rooms.add_member(room, connection_id)
        user.current_room = room
        self.rooms.ensure_room(room)

        emissions = self._read_receipts(self.tracker.mark_room_read(room, user))
        emissions.append(
            Emission(
                OutboundEvent.ROOM_CHANGED,
                {
                    "room": room,
                    "previousRoom": previous_room,
                    "messages": [message.to_wire() for message in self.rooms.messages(room)],
                },
                (connection_id,),
            )
        )
        emissions.append(
            Emission(
                OutboundEvent.USER_JOINED_ROOM,
                {"username": user.username, "room": room},
                self._room(room, exclude=connection_id),
            )
        )
        logger.info("%s moved from '%s' to '%s'", user.username, previous_room, room)
        return emissions

    def on_leave_room(self, connection_id: str, data: Any) -> List[Emission]:
        """
        Leaves the named room and falls back to the default room.
        Membership of the current room is not checked against the name.
        """
        user = self._require_user(connection_id)
        room = RoomName.validate_python(data)

        self.rooms.remove_member(room, connection_id)
        user.current_room = self.registry.default_room
        self.rooms.ensure_room(user.current_room)
        self.rooms.add_member(user.current_room, connection_id)

        logger.info("%s left '%s'", user.username, room)
        return [
            Emission(
                OutboundEvent.USER_LEFT_ROOM,
                {"username": user.username, "room": room},
                self._room(room),
            )
        ]

    def on_send_message(self, connection_id: str, data: Any) -> List[Emission]:
        """Stores a room message, broadcasts it and acks the sender."""
        user = self._require_user(connection_id)
        payload = SendMessagePayload.model_validate(data)

        message = self.tracker.create_room_message(user, payload)
        emissions = [Emission(OutboundEvent.RECEIVE_MESSAGE, message.to_wire(), self._room(user.current_room))]
        if payload.temp_id:
            emissions.append(
                Emission(
                    OutboundEvent.MESSAGE_ACK,
                    {"tempId": payload.temp_id, "id": message.id, "room": user.current_room},
                    (connection_id,),
                )
            )
        return emissions

    def on_private_message(self, connection_id: str, data: Any) -> List[Emission]:
        """Sends a 1:1 message to the recipient and echoes it to the sender."""
        user = self._require_user(connection_id)
        payload = PrivateMessagePayload.model_validate(data)
        self._require_user(payload.to)

        sender_view, recipient_view = self.tracker.create_private_message(user, payload.to, payload)

        emissions = []
        if payload.to != connection_id:
            emissions.append(Emission(OutboundEvent.PRIVATE_MESSAGE, recipient_view.to_wire(), (payload.to,)))
        emissions.append(Emission(OutboundEvent.PRIVATE_MESSAGE, sender_view.to_wire(), (connection_id,)))
        return emissions

    def on_typing(self, connection_id: str, data: Any) -> List[Emission]:
        """Updates the typing state and pushes the room's typer list."""
        user = self._require_user(connection_id)
        is_typing = TypingFlag.validate_python(data)

        if is_typing:
            self.rooms.set_typing(connection_id, user.username, user.current_room)
        else:
            self.rooms.clear_typing(connection_id)

        return [
            Emission(
                OutboundEvent.TYPING_USERS,
                self.rooms.typing_users(user.current_room),
                self._room(user.current_room),
            )
        ]

    def on_add_reaction(self, connection_id: str, data: Any) -> List[Emission]:
        """Toggles a reaction on a room message."""
        user = self._require_user(connection_id)
        payload = ReactionPayload.model_validate(data)

        reactions = self.tracker.toggle_reaction(payload.room, payload.message_id, user.username, payload.reaction)
        return [
            Emission(
                OutboundEvent.MESSAGE_REACTION_UPDATED,
                {"messageId": payload.message_id, "reactions": reactions},
                self._room(payload.room),
            )
        ]

    def on_mark_message_read(self, connection_id: str, data: Any) -> List[Emission]:
        """Records a read receipt and notifies the sender."""
        user = self._require_user(connection_id)
        payload = MarkReadPayload.model_validate(data)

        notice = self.tracker.mark_read(payload.message_id, user, payload.room, payload.is_private)
        return [self._read_receipt(notice)] if notice else []

    def on_mark_room_read(self, connection_id: str, data: Any) -> List[Emission]:
        """Records read receipts for a whole room log."""
        user = self._require_user(connection_id)
        payload = MarkRoomReadPayload.model_validate(data)
        if not self.rooms.has_room(payload.room):
            raise UnknownTarget(f"Room '{payload.room}' has no messages")

        return self._read_receipts(self.tracker.mark_room_read(payload.room, user))

    def on_disconnect(self, connection_id: str) -> List[Emission]:
        """Releases the connection's identity, memberships and typing state."""
        user = self.registry.release(connection_id)
        self.rooms.drop_connection(connection_id)
        if user is None:
            return []

        logger.info("%s left the chat", user.username)
        everyone = self._everyone()
        emissions = [
            Emission(OutboundEvent.USER_LEFT, {"username": user.username, "id": user.id}, everyone),
            self._presence(),
        ]

        # Every remaining client gets the typer list of its own room.
        by_room: Dict[str, List[str]] = {}
        for remaining in self.registry.users():
            by_room.setdefault(remaining.current_room, []).append(remaining.id)
        for room, connection_ids in by_room.items():
            emissions.append(
                Emission(OutboundEvent.TYPING_USERS, self.rooms.typing_users(room), tuple(connection_ids))
            )
        return emissions
