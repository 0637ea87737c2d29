"""
Tests for the chat REST routes: history, text messages, audio uploads, deletes.
"""

import io
import wave
from uuid import uuid4

import pytest

from guitar_dice.services.relay import ChatRelay


def make_wav(seconds: float, rate: int = 8000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(1)
        wav.setframerate(rate)
        wav.writeframes(b"\x80" * int(seconds * rate))
    return buffer.getvalue()


class RecordingSocket:
    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def send_json(self, data, mode: str = "text") -> None:
        self.frames.append(data)


@pytest.fixture
async def member(app) -> RecordingSocket:
    """A socket connected to the public room of the app relay."""
    from guitar_dice.models.domain import Identity

    socket = RecordingSocket()
    relay: ChatRelay = app.state.relay
    await relay.connect(socket, Identity(id=uuid4(), first_name="Lis", last_name="Tener"))
    return socket


class TestSendMessage:
    """Tests for POST /api/chat/message."""

    async def test_stores_sanitizes_and_broadcasts(
        self, async_client, session_resolver, make_user, member
    ):
        session_resolver.user_id = await make_user(first_name="Ada", last_name="Strummer")

        response = await async_client.post(
            "/api/chat/message",
            json={"roomId": "public", "content": "<script>x()</script>Drop D?"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Message sent successfully"
        assert body["chatMessage"]["content"] == "Drop D?"
        assert body["chatMessage"]["user"]["firstName"] == "Ada"
        assert [f["event"] for f in member.frames] == ["chat:message"]
        assert member.frames[0]["data"]["id"] == body["chatMessage"]["id"]

    async def test_blank_content(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/message", json={"roomId": "public", "content": "   "}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_CONTENT"

    async def test_too_long(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/message", json={"roomId": "public", "content": "x" * 1001}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_CONTENT"

    async def test_requires_session(self, async_client):
        response = await async_client.post(
            "/api/chat/message", json={"roomId": "public", "content": "hi"}
        )

        assert response.status_code == 401


class TestHistory:
    """Tests for GET /api/chat/history."""

    async def test_newest_first(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user
        for text in ("first", "second", "third"):
            await async_client.post("/api/chat/message", json={"roomId": "jam", "content": text})

        response = await async_client.get("/api/chat/history", params={"room": "jam", "limit": 2})

        assert response.status_code == 200
        assert [m["content"] for m in response.json()] == ["third", "second"]

    async def test_defaults_to_public_room(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user
        await async_client.post("/api/chat/message", json={"content": "hello"})

        response = await async_client.get("/api/chat/history")

        assert [m["roomId"] for m in response.json()] == ["public"]


class TestUploadAudio:
    """Tests for POST /api/chat/upload-audio."""

    async def test_valid_clip(self, async_client, session_resolver, free_user, upload_dir, member):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("riff.wav", make_wav(2), "audio/wav")},
            data={"roomId": "public"},
        )

        assert response.status_code == 200
        message = response.json()["chatMessage"]
        assert message["content"] is None
        assert message["audioDurationSec"] == 2
        assert message["mimeType"] == "audio/wav"
        assert message["audioUrl"].startswith("/uploads/chat/")
        filename = message["audioUrl"].rsplit("/", 1)[1]
        assert (upload_dir / filename).exists()
        assert member.frames[0]["data"]["audioUrl"] == message["audioUrl"]

    async def test_too_long_clip(self, async_client, session_resolver, free_user, upload_dir):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("long.wav", make_wav(31), "audio/wav")},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "DURATION_EXCEEDED"
        assert body["maxDuration"] == 30
        assert body["fileDuration"] == pytest.approx(31)
        assert list(upload_dir.iterdir()) == []

    async def test_spoofed_file(self, async_client, session_resolver, free_user, upload_dir):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("evil.mp3", b"<?php system($_GET['c']); ?>", "audio/mpeg")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_MAGIC_BYTES"
        assert list(upload_dir.iterdir()) == []

    async def test_wrong_mime_type(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE"

    async def test_oversized_file(self, async_client, session_resolver, free_user):
        from guitar_dice.config import settings

        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("big.wav", b"\x00" * (settings.chat_max_upload_bytes + 1), "audio/wav")},
        )

        assert response.status_code == 413
        assert response.json()["code"] == "FILE_TOO_LARGE"

    async def test_missing_file(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post("/api/chat/upload-audio", data={"roomId": "public"})

        assert response.status_code == 400
        assert response.json()["code"] == "NO_AUDIO_FILE"


class TestDeleteMessage:
    """Tests for DELETE /api/chat/messages/{id}."""

    async def test_owner_deletes_message_and_audio(
        self, async_client, session_resolver, free_user, upload_dir
    ):
        session_resolver.user_id = free_user
        created = await async_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("riff.wav", make_wav(1), "audio/wav")},
        )
        message = created.json()["chatMessage"]
        filename = message["audioUrl"].rsplit("/", 1)[1]

        response = await async_client.delete(f"/api/chat/messages/{message['id']}")

        assert response.status_code == 200
        assert not (upload_dir / filename).exists()

    async def test_someone_elses_message(self, async_client, session_resolver, make_user):
        session_resolver.user_id = await make_user()
        created = await async_client.post("/api/chat/message", json={"content": "mine"})
        message_id = created.json()["chatMessage"]["id"]

        session_resolver.user_id = await make_user()
        response = await async_client.delete(f"/api/chat/messages/{message_id}")

        assert response.status_code == 404
        assert response.json() == {"message": "Message not found"}
