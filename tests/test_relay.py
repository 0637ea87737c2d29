"""
Tests for the in-memory chat relay.
"""

import asyncio
from typing import Any
from uuid import uuid4

import pytest

from guitar_dice.models.domain import Identity
from guitar_dice.services.relay import ChatRelay, envelope


class FakeSocket:
    """Records frames; optionally fails every send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def make_identity(first_name: str = "Ada") -> Identity:
    return Identity(id=uuid4(), first_name=first_name, last_name="Test")


@pytest.fixture
def relay() -> ChatRelay:
    return ChatRelay(default_room="public")


class TestMembership:
    """Tests for connect, join and disconnect."""

    async def test_connect_joins_default_room(self, relay: ChatRelay):
        connection = await relay.connect(FakeSocket(), make_identity())

        assert connection.room == "public"
        assert relay.members("public") == [connection]

    async def test_join_leaves_previous_room(self, relay: ChatRelay):
        connection = await relay.connect(FakeSocket(), make_identity())

        await relay.join(connection, "jam")

        assert connection.room == "jam"
        assert relay.members("public") == []
        assert relay.members("jam") == [connection]

    async def test_empty_rooms_are_forgotten(self, relay: ChatRelay):
        connection = await relay.connect(FakeSocket(), make_identity())
        await relay.join(connection, "jam")

        assert relay.room_count() == 1

    async def test_disconnect_removes_connection(self, relay: ChatRelay):
        connection = await relay.connect(FakeSocket(), make_identity())

        await relay.disconnect(connection)

        assert connection.room is None
        assert relay.room_count() == 0

    async def test_disconnect_twice_is_harmless(self, relay: ChatRelay):
        connection = await relay.connect(FakeSocket(), make_identity())

        await relay.disconnect(connection)
        await relay.disconnect(connection)

        assert relay.room_count() == 0

    async def test_same_user_may_hold_several_connections(self, relay: ChatRelay):
        identity = make_identity()
        first = await relay.connect(FakeSocket(), identity)
        second = await relay.connect(FakeSocket(), identity)

        assert set(relay.members("public")) == {first, second}


class TestBroadcast:
    """Tests for ChatRelay.broadcast and emit."""

    async def test_delivers_to_room_members_only(self, relay: ChatRelay):
        in_room, elsewhere = FakeSocket(), FakeSocket()
        await relay.connect(in_room, make_identity())
        other = await relay.connect(elsewhere, make_identity())
        await relay.join(other, "jam")

        delivered = await relay.broadcast("public", "chat:message", {"content": "hi"})

        assert delivered == 1
        assert in_room.sent == [{"event": "chat:message", "data": {"content": "hi"}}]
        assert elsewhere.sent == []

    async def test_exclude_skips_sender(self, relay: ChatRelay):
        sender_socket, listener_socket = FakeSocket(), FakeSocket()
        sender = await relay.connect(sender_socket, make_identity())
        await relay.connect(listener_socket, make_identity())

        await relay.broadcast("public", "chat:typing", {"isTyping": True}, exclude=sender)

        assert sender_socket.sent == []
        assert listener_socket.sent == [envelope("chat:typing", {"isTyping": True})]

    async def test_failed_send_drops_only_that_connection(self, relay: ChatRelay):
        healthy = FakeSocket()
        await relay.connect(healthy, make_identity())
        broken = await relay.connect(FakeSocket(fail=True), make_identity())

        delivered = await relay.broadcast("public", "chat:message", {"n": 1})

        assert delivered == 1
        assert healthy.sent == [envelope("chat:message", {"n": 1})]
        assert broken.room is None
        assert broken not in relay.members("public")

    async def test_broadcast_to_empty_room(self, relay: ChatRelay):
        assert await relay.broadcast("nobody", "chat:message", {}) == 0

    async def test_emit_targets_one_connection(self, relay: ChatRelay):
        target_socket, other_socket = FakeSocket(), FakeSocket()
        target = await relay.connect(target_socket, make_identity())
        await relay.connect(other_socket, make_identity())

        assert await relay.emit(target, "chat:error", {"message": "nope"}) is True

        assert target_socket.sent == [envelope("chat:error", {"message": "nope"})]
        assert other_socket.sent == []

    async def test_concurrent_joins_keep_one_room_per_connection(self, relay: ChatRelay):
        """Interleaved joins never leave a connection registered in two rooms."""
        connections = [await relay.connect(FakeSocket(), make_identity()) for _ in range(10)]

        await asyncio.gather(
            *(relay.join(c, room) for c in connections for room in ("a", "b", "c"))
        )

        for connection in connections:
            rooms = [r for r in ("public", "a", "b", "c") if connection in relay.members(r)]
            assert rooms == [connection.room]
