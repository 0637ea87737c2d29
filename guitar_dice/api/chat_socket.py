"""
Chat WebSocket - Realtime room relay at /ws/chat.

The handshake is authenticated with the same session cookie as the REST API.
Rejected handshakes are closed with 1008 (policy violation) before accept:

    connecting -> rate limit per IP -> origin -> session -> user row -> accepted

Client frames and server events share one envelope: {"event": ..., "data": ...}

    chat:join     data: "roomId" or {"roomId"}           leave current room, join roomId
    chat:message  data: {"roomId", "content"}            persist, broadcast to room
    chat:typing   data: {"roomId", "isTyping"}           room except sender, not persisted

Server-only event: chat:error {"message"} to the sender.
"""

import json
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guitar_dice.api.dependencies import (
    client_ip,
    get_relay,
    get_session_resolver,
    is_allowed_origin,
)
from guitar_dice.config import settings
from guitar_dice.db.session import get_session_factory
from guitar_dice.exceptions import DatabaseError, InvalidMessageContentError
from guitar_dice.models.domain import Identity
from guitar_dice.observability.logging import get_logger, log_context
from guitar_dice.observability.metrics import metrics
from guitar_dice.services.chat import ChatService, message_to_response
from guitar_dice.services.identity import IdentityService, SessionResolver
from guitar_dice.services.rate_limiter import socket_connection_limiter, socket_event_limiter
from guitar_dice.services.relay import ChatConnection, ChatRelay

logger = get_logger(__name__)
router = APIRouter(tags=["chat"])

EVENT_JOIN = "chat:join"
EVENT_MESSAGE = "chat:message"
EVENT_TYPING = "chat:typing"
EVENT_ERROR = "chat:error"

MAX_ROOM_ID_LENGTH = 100


def _room_from(data: Any) -> str | None:
    """roomId from a payload; the default room when absent, None when unusable."""
    room = data.get("roomId") if isinstance(data, dict) else data
    if room is None or room == "":
        return settings.chat_default_room
    if not isinstance(room, str) or len(room) > MAX_ROOM_ID_LENGTH:
        return None
    return room


async def _reject(websocket: WebSocket, reason: str) -> None:
    logger.warning("chat_handshake_rejected", reason=reason, client=client_ip(websocket))
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


async def _authenticate(
    websocket: WebSocket,
    resolver: SessionResolver,
    session_factory: async_sessionmaker[AsyncSession],
) -> Identity | None:
    """Run the handshake checks; closes the socket and returns None on rejection."""
    if not socket_connection_limiter.is_allowed(client_ip(websocket)):
        metrics.record_rate_limited(socket_connection_limiter.name)
        await _reject(websocket, "Too many connection attempts. Please try again later.")
        return None

    # Non-browser clients send no Origin; browsers always do
    origin = websocket.headers.get("Origin")
    if origin is not None and not is_allowed_origin(origin, websocket.headers.get("Host")):
        await _reject(websocket, "Origin not allowed")
        return None

    user_id = resolver.resolve(websocket)
    if user_id is None:
        await _reject(websocket, "Authentication required")
        return None

    async with session_factory() as session:
        identity = await IdentityService(session).get_identity(user_id)
    if identity is None:
        await _reject(websocket, "User not found")
        return None

    return identity


async def _handle_message(
    connection: ChatConnection,
    data: Any,
    relay: ChatRelay,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    identity = connection.identity
    if not socket_event_limiter.is_allowed(str(identity.id)):
        metrics.record_rate_limited(socket_event_limiter.name)
        await relay.emit(connection, EVENT_ERROR, {"message": "Too many messages. Please slow down."})
        return

    room = _room_from(data)
    content = data.get("content") if isinstance(data, dict) else None
    if room is None:
        await relay.emit(connection, EVENT_ERROR, {"message": "Invalid room"})
        return

    try:
        async with session_factory() as session:
            message = await ChatService(session).create_text_message(identity, room, content)
    except InvalidMessageContentError as exc:
        await relay.emit(connection, EVENT_ERROR, {"message": exc.message})
        return
    except DatabaseError as exc:
        metrics.record_error("DatabaseError", "chat_socket_message")
        logger.error("chat_message_store_failed", room=room, error=str(exc))
        await relay.emit(connection, EVENT_ERROR, {"message": "Failed to send message"})
        return

    metrics.record_chat_message("text", "socket")
    payload = message_to_response(message).model_dump(mode="json", by_alias=True)
    await relay.broadcast(room, EVENT_MESSAGE, payload)


async def _dispatch(
    connection: ChatConnection,
    frame: Any,
    relay: ChatRelay,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    event = frame.get("event") if isinstance(frame, dict) else None
    data = frame.get("data") if isinstance(frame, dict) else None

    if event == EVENT_JOIN:
        room = _room_from(data)
        if room is None:
            await relay.emit(connection, EVENT_ERROR, {"message": "Invalid room"})
            return
        await relay.join(connection, room)
        logger.info("chat_room_joined", user_id=str(connection.identity.id), room=room)

    elif event == EVENT_MESSAGE:
        await _handle_message(connection, data, relay, session_factory)

    elif event == EVENT_TYPING:
        room = _room_from(data)
        if room is None:
            return
        identity = connection.identity
        await relay.broadcast(
            room,
            EVENT_TYPING,
            {
                "userId": str(identity.id),
                "userName": identity.display_name,
                "isTyping": bool(data.get("isTyping")) if isinstance(data, dict) else False,
            },
            exclude=connection,
        )

    else:
        await relay.emit(connection, EVENT_ERROR, {"message": "Unknown event"})


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    resolver: SessionResolver = Depends(get_session_resolver),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    relay: ChatRelay = Depends(get_relay),
) -> None:
    identity = await _authenticate(websocket, resolver, session_factory)
    if identity is None:
        return

    await websocket.accept()
    connection = await relay.connect(websocket, identity)

    with log_context(user_id=str(identity.id), connection_id=connection.connection_id):
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except ValueError:
                    await relay.emit(connection, EVENT_ERROR, {"message": "Invalid message format"})
                    continue
                await _dispatch(connection, frame, relay, session_factory)
        except WebSocketDisconnect:
            pass
        finally:
            await relay.disconnect(connection)
