"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from guitar_dice.models.api import SubscriptionStatus

# Reported by the usage status endpoint for test users
UNLIMITED_ROLLS = 999999


@dataclass(frozen=True)
class Identity:
    """Authenticated identity resolved once per request or socket handshake."""

    id: UUID
    first_name: str
    last_name: str
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ============================================================================
# Quota Ledger
# ============================================================================


@dataclass(frozen=True)
class QuotaSnapshot:
    """Quota fields of a user row as returned by an atomic update."""

    user_id: UUID
    dice_rolls_used: int
    dice_rolls_limit: int
    extra_roll_tokens: int
    ads_watched_count: int
    rolls_reset_date: date | None
    is_test_user: bool = False

    def __post_init__(self) -> None:
        """Validate quota constraints."""
        if self.dice_rolls_used < 0:
            raise ValueError(f"Used rolls cannot be negative: {self.dice_rolls_used}")
        if self.extra_roll_tokens < 0:
            raise ValueError(f"Extra tokens cannot be negative: {self.extra_roll_tokens}")

    @property
    def total_available(self) -> int:
        return self.dice_rolls_limit + self.extra_roll_tokens

    @property
    def remaining(self) -> int:
        return max(0, self.total_available - self.dice_rolls_used)


@dataclass(frozen=True)
class QuotaDenied:
    """Consume refused: base allowance and bonus tokens are exhausted."""

    reason: str = "limit_reached"
    limit_reached: bool = True


@dataclass(frozen=True)
class DailyLimitReached:
    """Bonus token refused: the daily ad reward cap was hit."""

    ads_watched_count: int
    daily_limit: int


@dataclass(frozen=True)
class UsageStatus:
    """Day-aware usage view (pure read, nothing persisted)."""

    dice_rolls_used: int
    dice_rolls_limit: int
    extra_roll_tokens: int
    ads_watched_count: int
    can_use_dice_roll: bool
    is_test_user: bool

    @property
    def total_available(self) -> int:
        return self.dice_rolls_limit + self.extra_roll_tokens

    @property
    def remaining(self) -> int:
        return max(0, self.total_available - self.dice_rolls_used)

    @classmethod
    def unlimited(cls) -> "UsageStatus":
        """Status reported for test users."""
        return cls(
            dice_rolls_used=0,
            dice_rolls_limit=UNLIMITED_ROLLS,
            extra_roll_tokens=UNLIMITED_ROLLS,
            ads_watched_count=0,
            can_use_dice_roll=True,
            is_test_user=True,
        )


# ============================================================================
# Referrals
# ============================================================================


@dataclass(frozen=True)
class ReferralApplyResult:
    """Outcome of applying a referral code."""

    success: bool
    message: str


@dataclass(frozen=True)
class ReferralData:
    """Immutable referral row."""

    referral_id: UUID
    referrer_user_id: UUID | None
    referee_user_id: UUID | None
    referral_code: str
    signup_date: datetime | None
    reward_granted: bool
    reward_granted_date: datetime | None


@dataclass(frozen=True)
class ReferralStats:
    """Referral dashboard data for one user."""

    referral_code: str | None
    referrals: list[ReferralData]
    referral_rewards_earned: int

    @property
    def total_referred(self) -> int:
        return len(self.referrals)

    @property
    def total_rewards_pending(self) -> int:
        return sum(1 for r in self.referrals if not r.reward_granted)


@dataclass
class RewardReport:
    """Result of one reward processing run."""

    processed: int = 0
    errors: list[str] = field(default_factory=list)


# ============================================================================
# Subscriptions
# ============================================================================


@dataclass(frozen=True)
class SubscriptionData:
    """Subscription state of a user."""

    status: SubscriptionStatus
    expiry: datetime | None
    is_active: bool


# ============================================================================
# Chat
# ============================================================================


@dataclass(frozen=True)
class ChatMessageData:
    """Immutable persisted chat message with its sender."""

    message_id: UUID
    room_id: str
    user_id: UUID
    content: str | None
    audio_url: str | None
    audio_duration_sec: int | None
    mime_type: str | None
    created_at: datetime
    sender: Identity


@dataclass(frozen=True)
class AudioInfo:
    """Validated audio upload."""

    format: str  # mp3, wav, ogg, m4a, flac
    extension: str
    mime_type: str
    duration_seconds: float

    @property
    def duration_sec(self) -> int:
        return round(self.duration_seconds)


@dataclass(frozen=True)
class StoredAudio:
    """Audio file written to the upload directory."""

    filename: str
    url: str


@dataclass(frozen=True)
class SubscriptionEvent:
    """Verified subscription change reported by the payment provider."""

    event_id: str
    event_type: str
    customer_id: str | None
    subscription_id: str | None
    status: SubscriptionStatus | None
    current_period_end: datetime | None
