"""
API Routes definition.
Handles message history, presence, the room catalog and the real-time WebSocket.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chathub.api.dependencies import get_hub
from chathub.core.events import Frame
from chathub.core.message import CamelModel, Message
from chathub.core.user import User
from chathub.services.hub import ChatHub

logger = logging.getLogger(__name__)

router = APIRouter()


class MessagePage(CamelModel):
    """One page of room history."""

    messages: List[Message]
    has_more: bool


# === REST routes ===


@router.get("/health")
async def health_check(hub: ChatHub = Depends(get_hub)) -> Dict[str, Any]:
    """Returns the hub status"""
    return {
        "status": "online",
        "connections": len(hub.manager.active_connections),
        "users": len(hub.registry),
    }


@router.get("/messages/{room}", response_model=MessagePage, response_model_exclude_none=True)
async def get_messages(
    room: str,
    before: Optional[datetime] = None,
    limit: Optional[int] = None,
    hub: ChatHub = Depends(get_hub),
) -> MessagePage:
    """
    Pages backwards through a room's history.
    Pass the oldest returned timestamp as `before` to get the previous page.
    """
    messages, has_more = hub.rooms.page(room, before=before, limit=hub.page_limit(limit))
    return MessagePage(messages=messages, has_more=has_more)


@router.get("/messages/{room}/search", response_model=List[Message], response_model_exclude_none=True)
async def search_messages(
    room: str,
    q: str = Query(default=""),
    hub: ChatHub = Depends(get_hub),
) -> List[Message]:
    """
    Case-insensitive text search in a room's log.
    """
    return hub.rooms.search(room, q, limit=hub.config.search_limit)


@router.get("/users", response_model=List[User])
async def get_users(hub: ChatHub = Depends(get_hub)) -> List[User]:
    """Current presence list"""
    return hub.registry.users()


@router.get("/rooms", response_model=List[str])
async def get_rooms(hub: ChatHub = Depends(get_hub)) -> List[str]:
    """Room catalog"""
    return hub.rooms.catalog()


# === WebSocket Route ===


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, hub: ChatHub = Depends(get_hub)) -> None:
    """
    Real-time chat endpoint.
    Every frame is `{"event": ..., "data": ...}`; frames that cannot be parsed are ignored.
    """
    connection_id = await hub.manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = Frame.model_validate_json(raw)
            except ValidationError as e:
                logger.debug("Ignoring malformed frame from %s: %s", connection_id, e)
                continue

            await hub.router.dispatch(connection_id, frame.event, frame.data)
    except WebSocketDisconnect:
        logger.debug("Client %s disconnected", connection_id)
    finally:
        await hub.router.disconnect(connection_id)
