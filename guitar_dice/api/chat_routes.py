"""
Chat API routes - History, text messages and audio uploads.

NO DICTIONARIES - All requests/responses use Pydantic models.

Messages created over REST are broadcast to the room through the same relay
the chat socket uses.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.api.dependencies import (
    get_audio_storage,
    get_audio_validator,
    get_current_user_id,
    get_relay,
    rate_limit,
    verify_same_origin,
)
from guitar_dice.config import settings
from guitar_dice.db.session import get_read_db, get_write_db
from guitar_dice.exceptions import DatabaseError
from guitar_dice.models.api import (
    ChatErrorResponse,
    ChatMessageResponse,
    MessageResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from guitar_dice.models.domain import ChatMessageData
from guitar_dice.observability.logging import get_logger
from guitar_dice.observability.metrics import metrics
from guitar_dice.services.audio import AudioStorage, AudioValidator
from guitar_dice.services.chat import ChatService, message_to_response
from guitar_dice.services.rate_limiter import mutation_rate_limiter
from guitar_dice.services.relay import ChatRelay

logger = get_logger(__name__)
router = APIRouter(prefix="/api/chat", tags=["chat"])


async def _broadcast(relay: ChatRelay, message: ChatMessageData) -> ChatMessageResponse:
    payload = message_to_response(message)
    await relay.broadcast(
        message.room_id, "chat:message", payload.model_dump(mode="json", by_alias=True)
    )
    return payload


@router.get("/history", response_model=list[ChatMessageResponse])
async def chat_history(
    room: str = Query(settings.chat_default_room, min_length=1, max_length=100),
    limit: int = Query(settings.chat_history_default_limit, ge=1),
    before: datetime | None = Query(None),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_read_db),
) -> list[ChatMessageResponse]:
    """Newest first. Page backwards with ?before=<createdAt of the oldest message seen>."""
    messages = await ChatService(db).get_history(room, limit, before)
    return [message_to_response(m) for m in messages]


@router.post(
    "/message",
    response_model=SendMessageResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ChatErrorResponse}},
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(mutation_rate_limiter, "chat message")),
    ],
)
async def send_message(
    request: SendMessageRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
    relay: ChatRelay = Depends(get_relay),
) -> SendMessageResponse:
    chat = ChatService(db)
    sender = await chat.get_sender(user_id)
    message = await chat.create_text_message(sender, request.room_id, request.content)
    metrics.record_chat_message("text", "rest")

    payload = await _broadcast(relay, message)
    return SendMessageResponse(message="Message sent successfully", chat_message=payload)


@router.post(
    "/upload-audio",
    response_model=SendMessageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ChatErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ChatErrorResponse},
    },
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(mutation_rate_limiter, "audio upload")),
    ],
)
async def upload_audio(
    audio: UploadFile | None = File(None),
    room_id: str = Form(settings.chat_default_room, alias="roomId", min_length=1, max_length=100),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
    relay: ChatRelay = Depends(get_relay),
    validator: AudioValidator = Depends(get_audio_validator),
    storage: AudioStorage = Depends(get_audio_storage),
) -> SendMessageResponse:
    """Validate, store and announce an audio clip (multipart field "audio")."""
    # One byte past the limit is enough to reject oversized uploads
    data = await audio.read(validator.max_bytes + 1) if audio is not None else b""
    info = await validator.validate(data, audio.content_type if audio is not None else None)

    chat = ChatService(db)
    sender = await chat.get_sender(user_id)
    stored = await storage.save(data, info)
    try:
        message = await chat.create_audio_message(sender, room_id, stored, info)
    except DatabaseError:
        await storage.delete_url(stored.url)
        raise
    metrics.record_chat_message("audio", "rest")

    payload = await _broadcast(relay, message)
    return SendMessageResponse(message="Audio uploaded successfully", chat_message=payload)


@router.delete(
    "/messages/{message_id}",
    response_model=MessageResponse,
    dependencies=[Depends(verify_same_origin)],
)
async def delete_message(
    message_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
    storage: AudioStorage = Depends(get_audio_storage),
) -> MessageResponse:
    """Delete one of the caller's own messages."""
    deleted = await ChatService(db).delete_message(message_id, user_id)
    if deleted is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    if deleted.audio_url:
        await storage.delete_url(deleted.audio_url)
    return MessageResponse(message="Message deleted")
