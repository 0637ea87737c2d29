"""
Subscription Service - Subscription state read by the quota premium bypass
and written by the Stripe webhook.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.db.models import User
from guitar_dice.exceptions import DatabaseError, UserNotFoundError
from guitar_dice.models.api import SubscriptionStatus
from guitar_dice.models.domain import SubscriptionData
from guitar_dice.observability.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def is_premium(
    status: SubscriptionStatus | str | None,
    expiry: datetime | None,
    now: datetime | None = None,
) -> bool:
    """Active subscriber: status is active and the expiry is still in the future."""
    if status is None or SubscriptionStatus(status) != SubscriptionStatus.ACTIVE:
        return False
    expiry = as_utc(expiry)
    if expiry is None:
        return False
    return expiry > (now or utc_now())


class SubscriptionService:
    """Reads and updates subscription state on the users table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_status(self, user_id: UUID) -> SubscriptionData:
        result = await self.session.execute(
            select(User.subscription_status, User.subscription_expiry).where(User.id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            raise UserNotFoundError(user_id)

        expiry = as_utc(row.subscription_expiry)
        return SubscriptionData(
            status=SubscriptionStatus(row.subscription_status),
            expiry=expiry,
            is_active=is_premium(row.subscription_status, expiry),
        )

    async def update_status(
        self,
        customer_id: str,
        status: SubscriptionStatus,
        expiry: datetime | None,
        subscription_id: str | None = None,
    ) -> UUID | None:
        """
        Apply a subscription change reported by the payment provider.

        Returns the affected user id, or None when no user carries the customer id.
        """
        stmt = (
            update(User)
            .where(User.stripe_customer_id == customer_id)
            .values(
                subscription_status=status,
                subscription_expiry=expiry,
                updated_at=utc_now(),
            )
            .returning(User.id)
            .execution_options(synchronize_session=False)
        )
        if subscription_id is not None:
            stmt = stmt.values(stripe_subscription_id=subscription_id)
        try:
            result = await self.session.execute(stmt)
            user_id = result.scalar_one_or_none()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("subscription_update_failed", customer_id=customer_id, error=str(e))
            raise DatabaseError(f"Failed to update subscription: {e}") from e

        if user_id is None:
            logger.warning("subscription_update_unknown_customer", customer_id=customer_id)
        else:
            logger.info(
                "subscription_updated",
                user_id=str(user_id),
                status=status.value,
                expiry=expiry.isoformat() if expiry else None,
            )
        return user_id
