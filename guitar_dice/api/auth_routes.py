"""
Auth API routes - Password registration/login backed by the session cookie.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.api.dependencies import (
    get_audio_storage,
    get_current_user_id,
    rate_limit,
    verify_same_origin,
)
from guitar_dice.db.models import User
from guitar_dice.db.session import get_read_db, get_write_db
from guitar_dice.models.api import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    SubscriptionStatus,
    UserResponse,
)
from guitar_dice.services.audio import AudioStorage
from guitar_dice.services.identity import IdentityService, login_session, logout_session
from guitar_dice.services.rate_limiter import mutation_rate_limiter

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        profile_image_url=user.profile_image_url,
        subscription_status=SubscriptionStatus(user.subscription_status),
        is_test_user=user.is_test_user,
    )


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(mutation_rate_limiter, "registration")),
    ],
)
async def register(
    body: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_write_db),
) -> UserResponse:
    user = await IdentityService(db).register(
        body.email, body.password, body.first_name, body.last_name
    )
    login_session(request, user.id)
    return _user_response(user)


@router.post(
    "/login",
    response_model=UserResponse,
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(mutation_rate_limiter, "login")),
    ],
)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_write_db),
) -> UserResponse:
    user = await IdentityService(db).authenticate(body.email, body.password)
    login_session(request, user.id)
    return _user_response(user)


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request) -> MessageResponse:
    logout_session(request)
    return MessageResponse(message="Logged out")


@router.get("/user", response_model=UserResponse)
async def current_user(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_read_db),
) -> UserResponse:
    user = await IdentityService(db).get_user(user_id)
    return _user_response(user)


@router.delete(
    "/account",
    response_model=MessageResponse,
    dependencies=[Depends(verify_same_origin)],
)
async def delete_account(
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
    storage: AudioStorage = Depends(get_audio_storage),
) -> MessageResponse:
    """Delete the caller's account, referrals, messages and audio files."""
    await IdentityService(db).delete_user_cascade(user_id, storage)
    logout_session(request)
    return MessageResponse(message="Account deleted successfully")
