"""
Tests for password auth and the signed session cookie.

Uses cookie_client, so requests are authenticated only by the cookie the
SessionMiddleware issues on register/login.
"""

from uuid import UUID

from sqlalchemy import select

from guitar_dice.db.models import ChatMessage, Referral, User

PASSWORD = "correct-horse-battery"


async def register(client, email: str = "player@example.com", **extra):
    return await client.post(
        "/api/auth/register",
        json={"email": email, "password": PASSWORD, "firstName": "Ada", "lastName": "S", **extra},
    )


class TestRegister:
    """Tests for POST /api/auth/register."""

    async def test_creates_user_and_session(self, cookie_client, fetch_user):
        response = await register(cookie_client, email="  Player@Example.COM ")

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "player@example.com"
        assert body["subscriptionStatus"] == "free"
        assert body["isTestUser"] is False

        user = await fetch_user(UUID(body["id"]))
        assert user.password_hash and PASSWORD not in user.password_hash
        assert user.dice_rolls_limit == 5

        me = await cookie_client.get("/api/auth/user")
        assert me.status_code == 200
        assert me.json()["id"] == body["id"]

    async def test_duplicate_email(self, cookie_client):
        await register(cookie_client)

        response = await register(cookie_client, email="PLAYER@example.com")

        assert response.status_code == 409

    async def test_invalid_email(self, cookie_client):
        response = await register(cookie_client, email="not-an-email")

        assert response.status_code == 400

    async def test_short_password(self, cookie_client):
        response = await cookie_client.post(
            "/api/auth/register", json={"email": "a@example.com", "password": "123"}
        )

        assert response.status_code == 400


class TestLogin:
    """Tests for POST /api/auth/login and /api/auth/logout."""

    async def test_login_after_logout(self, cookie_client):
        await register(cookie_client)
        await cookie_client.post("/api/auth/logout")
        assert (await cookie_client.get("/api/auth/user")).status_code == 401

        response = await cookie_client.post(
            "/api/auth/login", json={"email": "player@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        assert (await cookie_client.get("/api/auth/user")).status_code == 200

    async def test_wrong_password(self, cookie_client):
        await register(cookie_client)
        await cookie_client.post("/api/auth/logout")

        response = await cookie_client.post(
            "/api/auth/login", json={"email": "player@example.com", "password": "wrong-password"}
        )

        assert response.status_code == 401
        assert response.json() == {"message": "Invalid email or password"}

    async def test_unknown_email(self, cookie_client):
        response = await cookie_client.post(
            "/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD}
        )

        assert response.status_code == 401
        assert response.json() == {"message": "Invalid email or password"}

    async def test_session_cookie_authenticates_usage(self, cookie_client):
        await register(cookie_client)

        response = await cookie_client.post("/api/usage/increment-dice-roll")

        assert response.status_code == 200
        assert response.json()["diceRollsUsed"] == 1

    async def test_tampered_cookie_is_anonymous(self, cookie_client):
        from guitar_dice.config import settings

        cookie_client.cookies.set(settings.session_cookie_name, "forged.value.here")

        response = await cookie_client.get("/api/auth/user")

        assert response.status_code == 401


class TestDeleteAccount:
    """Tests for DELETE /api/auth/account."""

    async def test_removes_user_and_owned_rows(
        self, cookie_client, session_factory, upload_dir, make_user
    ):
        import io
        import wave

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(1)
            wav.setframerate(8000)
            wav.writeframes(b"\x80" * 8000)

        user_id = UUID((await register(cookie_client)).json()["id"])
        await cookie_client.post("/api/chat/message", json={"content": "bye"})
        uploaded = await cookie_client.post(
            "/api/chat/upload-audio",
            files={"audio": ("clip.wav", buffer.getvalue(), "audio/wav")},
        )
        filename = uploaded.json()["chatMessage"]["audioUrl"].rsplit("/", 1)[1]
        await make_user(referral_code="BYEBYE01")
        await cookie_client.post("/api/referrals/apply", json={"referralCode": "BYEBYE01"})

        response = await cookie_client.delete("/api/auth/account")

        assert response.status_code == 200
        assert not (upload_dir / filename).exists()
        assert (await cookie_client.get("/api/auth/user")).status_code == 401
        async with session_factory() as session:
            assert await session.get(User, user_id) is None
            messages = await session.execute(
                select(ChatMessage).where(ChatMessage.user_id == user_id)
            )
            assert messages.scalars().all() == []
            referrals = await session.execute(
                select(Referral).where(Referral.referee_user_id == user_id)
            )
            assert referrals.scalars().all() == []

    async def test_requires_session(self, cookie_client):
        response = await cookie_client.delete("/api/auth/account")

        assert response.status_code == 401
