"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire format is camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class SubscriptionStatus(str, Enum):
    """Subscription status enumeration."""

    FREE = "free"
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class ChatErrorCode(str, Enum):
    """Machine-readable rejection codes for chat input."""

    INVALID_CONTENT = "INVALID_CONTENT"
    NO_AUDIO_FILE = "NO_AUDIO_FILE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_MAGIC_BYTES = "INVALID_MAGIC_BYTES"
    INCONSISTENT_FILE_FORMAT = "INCONSISTENT_FILE_FORMAT"
    INVALID_AUDIO_METADATA = "INVALID_AUDIO_METADATA"
    DURATION_EXCEEDED = "DURATION_EXCEEDED"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Usage Models
# ============================================================================


class UsageStatusResponse(CamelModel):
    """GET /api/usage/status response."""

    dice_rolls_used: int
    dice_rolls_limit: int
    extra_roll_tokens: int
    total_available_rolls: int
    remaining_rolls: int
    ads_watched_count: int
    can_use_dice_roll: bool
    is_test_user: bool


class DiceRollResponse(CamelModel):
    """POST /api/usage/increment-dice-roll success response."""

    dice_rolls_used: int
    dice_rolls_limit: int
    extra_roll_tokens: int
    remaining_rolls: int


class LimitReachedResponse(CamelModel):
    """POST /api/usage/increment-dice-roll denial (403)."""

    message: str = (
        "Dice roll limit reached. Watch an ad or upgrade to premium for unlimited rolls."
    )
    limit_reached: bool = True


class AdRewardResponse(CamelModel):
    """POST /api/usage/watch-ad-reward response."""

    success: bool
    message: str
    extra_roll_tokens: int | None = None
    ads_watched_count: int | None = None
    daily_limit_reached: bool = False
    temporarily_disabled: bool = False


# ============================================================================
# Referral Models
# ============================================================================


class ApplyReferralRequest(CamelModel):
    """POST /api/referrals/apply request body."""

    referral_code: str = Field(..., min_length=1, max_length=20)

    @field_validator("referral_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Referral codes are case-insensitive."""
        return v.strip().upper()


class ApplyReferralResponse(CamelModel):
    """POST /api/referrals/apply response."""

    success: bool
    message: str


class ReferralCodeResponse(CamelModel):
    """POST /api/referrals/generate-code response."""

    referral_code: str
    message: str


class ReferralItem(CamelModel):
    """One referral in the dashboard."""

    id: UUID
    referee_user_id: UUID | None
    referral_code: str
    signup_date: datetime | None
    reward_granted: bool
    reward_granted_date: datetime | None


class ReferralDashboardResponse(CamelModel):
    """GET /api/referrals/dashboard response."""

    referral_code: str | None
    referrals: list[ReferralItem]
    total_referred: int
    total_rewards_pending: int
    referral_rewards_earned: int


class ProcessRewardsResponse(CamelModel):
    """POST /admin/referrals/process-rewards response."""

    processed: int
    errors: list[str]


# ============================================================================
# Chat Models
# ============================================================================


class ChatUser(CamelModel):
    """Denormalized sender fields attached to every chat message."""

    id: UUID
    first_name: str
    last_name: str
    profile_image_url: str | None = None


class ChatMessageResponse(CamelModel):
    """A persisted chat message with its sender."""

    id: UUID
    room_id: str
    user_id: UUID
    content: str | None
    audio_url: str | None
    audio_duration_sec: int | None
    mime_type: str | None
    created_at: datetime
    user: ChatUser


class SendMessageRequest(CamelModel):
    """POST /api/chat/message request body."""

    room_id: str = Field("public", min_length=1, max_length=100)
    # Length rules live in ChatService so REST and socket reject identically
    content: str


class SendMessageResponse(CamelModel):
    """POST /api/chat/message and upload-audio response."""

    message: str
    chat_message: ChatMessageResponse


class ChatErrorResponse(CamelModel):
    """Typed rejection body for chat and upload validation."""

    message: str
    code: ChatErrorCode
    max_duration: int | None = None
    file_duration: float | None = None


# ============================================================================
# Auth Models
# ============================================================================


class RegisterRequest(CamelModel):
    """POST /api/auth/register request body."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=255)
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Emails are stored lower-cased."""
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Valid email is required")
        return v


class LoginRequest(CamelModel):
    """POST /api/auth/login request body."""

    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)


class UserResponse(CamelModel):
    """GET /api/auth/user response."""

    id: UUID
    email: str
    first_name: str | None
    last_name: str | None
    profile_image_url: str | None
    subscription_status: SubscriptionStatus
    is_test_user: bool


# ============================================================================
# Subscription Models
# ============================================================================


class SubscriptionStatusResponse(CamelModel):
    """GET /api/subscription/status response."""

    has_active_subscription: bool
    subscription_status: SubscriptionStatus
    subscription_expiry: datetime | None


# ============================================================================
# Health / Misc
# ============================================================================


class MessageResponse(CamelModel):
    """Generic message body."""

    message: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
