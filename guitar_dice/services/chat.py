"""
Chat Service - Persisted chat messages with denormalized sender fields.

NO DICTIONARIES - All operations use strongly typed domain models.

Text content is sanitized before it is stored: the markup is parsed,
script/style bodies and comments are dropped, every remaining tag is
unwrapped, and the text is serialized with <, > and & escaped. Angle
brackets that survive parsing therefore come out as entities and can never
rejoin into a live tag.
"""

import warnings
from datetime import datetime
from uuid import UUID

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning, ParserRejectedMarkup
from bs4.element import PreformattedString
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.config import settings
from guitar_dice.db.models import ChatMessage, User
from guitar_dice.exceptions import DatabaseError, InvalidMessageContentError, UserNotFoundError
from guitar_dice.models.api import ChatMessageResponse, ChatUser
from guitar_dice.models.domain import AudioInfo, ChatMessageData, Identity, StoredAudio
from guitar_dice.observability.logging import get_logger
from guitar_dice.services.subscriptions import as_utc

logger = get_logger(__name__)

# Elements whose text content is dropped along with the tags
_DROPPED_ELEMENTS = ["script", "style"]

# Short chat lines like "solo.wav" look like filenames to BeautifulSoup
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)


def sanitize_content(content: str) -> str:
    """Strip all markup from user text."""
    try:
        soup = BeautifulSoup(content, "html.parser")
    except ParserRejectedMarkup as e:
        logger.info("chat_content_rejected_by_parser", error=str(e))
        raise InvalidMessageContentError() from e

    for element in soup.find_all(_DROPPED_ELEMENTS):
        element.decompose()
    # Comments, doctypes, CDATA and processing instructions
    for node in soup.find_all(string=lambda s: isinstance(s, PreformattedString)):
        node.extract()
    for tag in soup.find_all(True):
        tag.unwrap()

    return soup.decode(formatter="minimal").strip()


def validate_content(content: object, max_length: int | None = None) -> str:
    """Reject non-string, blank or over-long content before sanitizing."""
    limit = max_length if max_length is not None else settings.chat_max_message_length
    if not isinstance(content, str) or not content.strip() or len(content) > limit:
        raise InvalidMessageContentError()
    return content


def message_to_response(message: ChatMessageData) -> ChatMessageResponse:
    """API shape of a persisted message, shared by REST and the socket."""
    sender = message.sender
    return ChatMessageResponse(
        id=message.message_id,
        room_id=message.room_id,
        user_id=message.user_id,
        content=message.content,
        audio_url=message.audio_url,
        audio_duration_sec=message.audio_duration_sec,
        mime_type=message.mime_type,
        created_at=message.created_at,
        user=ChatUser(
            id=sender.id,
            first_name=sender.first_name,
            last_name=sender.last_name,
            profile_image_url=sender.avatar_url,
        ),
    )


class ChatService:
    """Creates, lists and deletes chat messages."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_text_message(
        self, sender: Identity, room_id: str, content: object
    ) -> ChatMessageData:
        """Validate, sanitize and persist a text message."""
        text = sanitize_content(validate_content(content))
        message = ChatMessage(room_id=room_id, user_id=sender.id, content=text)
        return await self._persist(message, sender)

    async def create_audio_message(
        self,
        sender: Identity,
        room_id: str,
        stored: StoredAudio,
        info: AudioInfo,
    ) -> ChatMessageData:
        """Persist an audio-only message for an already validated and stored clip."""
        message = ChatMessage(
            room_id=room_id,
            user_id=sender.id,
            content=None,
            audio_url=stored.url,
            audio_duration_sec=info.duration_sec,
            mime_type=info.mime_type,
        )
        return await self._persist(message, sender)

    async def get_history(
        self,
        room_id: str,
        limit: int | None = None,
        before: datetime | None = None,
    ) -> list[ChatMessageData]:
        """Newest first; before pages backwards by created_at."""
        limit = limit or settings.chat_history_default_limit
        limit = max(1, min(limit, settings.chat_history_max_limit))

        stmt = (
            select(ChatMessage, User)
            .join(User, User.id == ChatMessage.user_id)
            .where(ChatMessage.room_id == room_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        if before is not None:
            stmt = stmt.where(ChatMessage.created_at < before)

        result = await self.session.execute(stmt)
        return [
            self._to_domain(message, identity_from_user(user)) for message, user in result.all()
        ]

    async def delete_message(self, message_id: UUID, user_id: UUID) -> ChatMessageData | None:
        """Delete a message owned by user_id. None if missing or not theirs."""
        result = await self.session.execute(
            select(ChatMessage, User)
            .join(User, User.id == ChatMessage.user_id)
            .where(ChatMessage.id == message_id, ChatMessage.user_id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            return None

        message, user = row
        data = self._to_domain(message, identity_from_user(user))
        try:
            await self.session.execute(
                delete(ChatMessage)
                .where(ChatMessage.id == message_id, ChatMessage.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DatabaseError(f"Failed to delete chat message: {e}") from e

        logger.info("chat_message_deleted", message_id=str(message_id), user_id=str(user_id))
        return data

    async def get_sender(self, user_id: UUID) -> Identity:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return identity_from_user(user)

    async def _persist(self, message: ChatMessage, sender: Identity) -> ChatMessageData:
        self.session.add(message)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "chat_message_persist_failed",
                room=message.room_id,
                user_id=str(sender.id),
                error=str(e),
            )
            raise DatabaseError(f"Failed to save chat message: {e}") from e

        return self._to_domain(message, sender)

    @staticmethod
    def _to_domain(message: ChatMessage, sender: Identity) -> ChatMessageData:
        return ChatMessageData(
            message_id=message.id,
            room_id=message.room_id,
            user_id=message.user_id,
            content=message.content,
            audio_url=message.audio_url,
            audio_duration_sec=message.audio_duration_sec,
            mime_type=message.mime_type,
            created_at=as_utc(message.created_at),  # type: ignore[arg-type]
            sender=sender,
        )


def identity_from_user(user: User) -> Identity:
    return Identity(
        id=user.id,
        first_name=user.first_name or "",
        last_name=user.last_name or "",
        avatar_url=user.profile_image_url,
    )
