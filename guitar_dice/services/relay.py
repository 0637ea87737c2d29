"""
Chat Relay - In-memory room registry for connected chat sockets.

Each connection is in exactly one room at a time. Broadcasts snapshot the
room membership under the lock and send outside it, so a slow client never
blocks joins or other rooms. A send that fails drops only that connection.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import uuid4

from guitar_dice.config import settings
from guitar_dice.models.domain import Identity
from guitar_dice.observability.logging import get_logger
from guitar_dice.observability.metrics import metrics

logger = get_logger(__name__)


class JSONSender(Protocol):
    """Anything that can push a JSON frame to a client (a Starlette WebSocket)."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...


@dataclass(eq=False)
class ChatConnection:
    """One authenticated socket and the room it is currently in."""

    socket: JSONSender
    identity: Identity
    room: str | None = None
    connection_id: str = field(default_factory=lambda: uuid4().hex)


def envelope(event: str, data: Any) -> dict[str, Any]:
    """Wire frame shared by every server event."""
    return {"event": event, "data": data}


class ChatRelay:
    """
    Room -> connections registry.

    Usage:
        relay = ChatRelay()
        conn = await relay.connect(websocket, identity)   # joins "public"
        await relay.broadcast("public", "chat:message", payload)
        await relay.disconnect(conn)
    """

    def __init__(self, default_room: str | None = None) -> None:
        self.default_room = default_room or settings.chat_default_room
        self._rooms: dict[str, set[ChatConnection]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, socket: JSONSender, identity: Identity) -> ChatConnection:
        """Register an authenticated socket and auto-join the default room."""
        connection = ChatConnection(socket=socket, identity=identity)
        await self.join(connection, self.default_room)
        metrics.chat_connections_active.inc()
        logger.info(
            "chat_connected",
            user_id=str(identity.id),
            connection_id=connection.connection_id,
            room=self.default_room,
        )
        return connection

    async def join(self, connection: ChatConnection, room: str) -> None:
        """Move connection to room, leaving its current room."""
        async with self._lock:
            self._remove_locked(connection)
            self._rooms.setdefault(room, set()).add(connection)
            connection.room = room

    async def disconnect(self, connection: ChatConnection) -> None:
        async with self._lock:
            removed = self._remove_locked(connection)
        if removed:
            metrics.chat_connections_active.dec()
            logger.info(
                "chat_disconnected",
                user_id=str(connection.identity.id),
                connection_id=connection.connection_id,
            )

    async def broadcast(
        self,
        room: str,
        event: str,
        data: Any,
        exclude: ChatConnection | None = None,
    ) -> int:
        """Send event to every connection in room. Returns the number delivered."""
        async with self._lock:
            targets = [c for c in self._rooms.get(room, ()) if c is not exclude]

        frame = envelope(event, data)
        delivered = 0
        for connection in targets:
            if await self._send(connection, frame):
                delivered += 1
        return delivered

    async def emit(self, connection: ChatConnection, event: str, data: Any) -> bool:
        """Send event to a single connection."""
        return await self._send(connection, envelope(event, data))

    def members(self, room: str) -> list[ChatConnection]:
        return list(self._rooms.get(room, ()))

    def room_count(self) -> int:
        return len(self._rooms)

    async def _send(self, connection: ChatConnection, frame: dict[str, Any]) -> bool:
        try:
            await connection.socket.send_json(frame)
        except Exception as e:
            # Closed or broken socket: drop it, keep delivering to the rest
            logger.warning(
                "chat_send_failed",
                connection_id=connection.connection_id,
                event=frame["event"],
                error=str(e),
            )
            await self.disconnect(connection)
            return False
        return True

    def _remove_locked(self, connection: ChatConnection) -> bool:
        if connection.room is None:
            return False
        members = self._rooms.get(connection.room)
        removed = False
        if members is not None and connection in members:
            members.discard(connection)
            removed = True
            if not members:
                del self._rooms[connection.room]
            connection.room = None
        return removed
