"""
Identity Service - Users, password login and session identity.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from typing import Protocol
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from guitar_dice.config import settings
from guitar_dice.db.models import ChatMessage, User
from guitar_dice.exceptions import (
    AuthenticationError,
    DatabaseError,
    EmailAlreadyRegisteredError,
    PathTraversalError,
    UserNotFoundError,
)
from guitar_dice.models.api import SubscriptionStatus
from guitar_dice.models.domain import Identity
from guitar_dice.observability.logging import get_logger
from guitar_dice.services.audio import AudioStorage
from guitar_dice.services.chat import identity_from_user

logger = get_logger(__name__)

SESSION_USER_KEY = "user_id"


class SessionResolver(Protocol):
    """Maps a request or socket handshake to the authenticated user id."""

    def resolve(self, connection: HTTPConnection) -> UUID | None: ...


class CookieSessionResolver:
    """Reads the user id stored in the signed session cookie."""

    def resolve(self, connection: HTTPConnection) -> UUID | None:
        if "session" not in connection.scope:
            return None
        raw = connection.session.get(SESSION_USER_KEY)
        if not raw:
            return None
        try:
            return UUID(str(raw))
        except ValueError:
            logger.warning("session_user_id_invalid")
            return None


def login_session(connection: HTTPConnection, user_id: UUID) -> None:
    connection.session.clear()
    connection.session[SESSION_USER_KEY] = str(user_id)


def logout_session(connection: HTTPConnection) -> None:
    connection.session.clear()


class IdentityService:
    """
    User accounts.

    Passwords are hashed with Argon2; the plaintext is never stored or logged.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.password_hasher = PasswordHasher()

    async def get_user(self, user_id: UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def get_identity(self, user_id: UUID) -> Identity | None:
        """Identity for a session user id; None when the row is gone."""
        user = await self.session.get(User, user_id)
        if user is None:
            return None
        return identity_from_user(user)

    async def register(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        email = email.strip().lower()
        existing = await self.session.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise EmailAlreadyRegisteredError(email)

        user = User(
            email=email,
            password_hash=self.password_hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            subscription_status=SubscriptionStatus.FREE,
            dice_rolls_limit=settings.default_dice_rolls_limit,
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as e:
            # Concurrent registration of the same email
            await self.session.rollback()
            raise EmailAlreadyRegisteredError(email) from e

        logger.info("user_registered", user_id=str(user.id))
        return user

    async def authenticate(self, email: str, password: str) -> User:
        result = await self.session.execute(
            select(User).where(User.email == email.strip().lower())
        )
        user = result.scalar_one_or_none()
        if user is None or not user.password_hash:
            logger.warning("login_unknown_email")
            raise AuthenticationError("Invalid email or password")

        try:
            self.password_hasher.verify(user.password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            logger.warning("login_password_mismatch", user_id=str(user.id))
            raise AuthenticationError("Invalid email or password")

        if self.password_hasher.check_needs_rehash(user.password_hash):
            user.password_hash = self.password_hasher.hash(password)
            await self.session.commit()

        logger.info("user_logged_in", user_id=str(user.id))
        return user

    async def delete_user_cascade(self, user_id: UUID, storage: AudioStorage) -> int:
        """
        Delete a user and everything they own.

        Referrals and chat messages go with the user row through ON DELETE
        CASCADE. Audio files are removed after the commit; a file that cannot
        be removed is logged and left behind. Returns the number of files removed.
        """
        audio = await self.session.execute(
            select(ChatMessage.audio_url).where(
                ChatMessage.user_id == user_id, ChatMessage.audio_url.is_not(None)
            )
        )
        audio_urls = [url for url in audio.scalars().all() if url]

        try:
            result = await self.session.execute(
                delete(User)
                .where(User.id == user_id)
                .returning(User.id)
                .execution_options(synchronize_session=False)
            )
            deleted = result.scalar_one_or_none()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DatabaseError(f"Failed to delete user: {e}") from e

        if deleted is None:
            raise UserNotFoundError(user_id)

        removed = 0
        for url in audio_urls:
            try:
                if await storage.delete_url(url):
                    removed += 1
            except (OSError, PathTraversalError) as e:
                logger.warning("audio_cleanup_failed", user_id=str(user_id), url=url, error=str(e))

        logger.info("user_deleted", user_id=str(user_id), audio_files_removed=removed)
        return removed
