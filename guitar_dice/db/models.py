"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from guitar_dice.models.api import SubscriptionStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Identity, subscription state, and the quota/referral counters mutated by
    the quota ledger and referral processor through guarded updates.
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity fields
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    profile_image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Subscription (written by the Stripe webhook and referral rewards)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(
            SubscriptionStatus,
            name="subscription_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=SubscriptionStatus.FREE,
    )
    subscription_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Daily dice roll allowance
    dice_rolls_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dice_rolls_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    rolls_reset_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Bonus tokens (ads, referral rewards) consumed after the base limit
    extra_roll_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ads_watched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ads_watch_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_ads_watched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Referral system
    referral_code: Mapped[str | None] = mapped_column(String(20), nullable=True, unique=True)
    referred_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    referral_rewards_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Testers bypass every quota check
    is_test_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("dice_rolls_used >= 0", name="ck_dice_rolls_used_non_negative"),
        CheckConstraint("extra_roll_tokens >= 0", name="ck_extra_roll_tokens_non_negative"),
        CheckConstraint("ads_watched_count >= 0", name="ck_ads_watched_non_negative"),
        Index("idx_users_stripe_customer", "stripe_customer_id"),
        Index("idx_users_subscription_status", "subscription_status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<User(id={self.id}, email={self.email}, "
            f"rolls={self.dice_rolls_used}/{self.dice_rolls_limit}+{self.extra_roll_tokens})>"
        )


class Referral(Base):
    """
    ORM model for referrals table.

    One row per referred user; reward_granted flips false -> true exactly once.
    """

    __tablename__ = "referrals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    referrer_user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    referee_user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, unique=True
    )
    referral_code: Mapped[str] = mapped_column(String(20), nullable=False)
    signup_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=utc_now
    )

    reward_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reward_granted_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_referrals_pending", "reward_granted"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Referral(id={self.id}, referrer={self.referrer_user_id}, "
            f"referee={self.referee_user_id}, granted={self.reward_granted})>"
        )


class ChatMessage(Base):
    """
    ORM model for chat_messages table.

    Created on send, never mutated. Exactly one of content / audio_url is set.
    """

    __tablename__ = "chat_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    room_id: Mapped[str] = mapped_column(String(100), nullable=False, default="public")
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    audio_duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "(content IS NULL) <> (audio_url IS NULL)",
            name="ck_chat_message_single_payload",
        ),
        Index("idx_chat_messages_room_created", "room_id", "created_at"),
        Index("idx_chat_messages_user", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        kind = "audio" if self.audio_url else "text"
        return f"<ChatMessage(id={self.id}, room={self.room_id}, kind={kind})>"
