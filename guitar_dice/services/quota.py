"""
Quota Ledger - Daily dice roll allowance with bonus tokens.

NO DICTIONARIES - All operations use strongly typed domain models.

Every mutation is a single guarded UPDATE ... RETURNING statement, so two
concurrent requests for the same user can never both pass the same check:
the database decides which one matches the guard.

Consume order:
1. Test users and active subscribers only touch updated_at
2. Reset the daily counter if the stored reset date is before today
3. Spend from the base allowance (used < limit)
4. Spend a bonus token (used >= limit AND tokens > 0)
5. Otherwise deny
"""

from datetime import UTC, date, datetime
from uuid import UUID

from sqlalchemy import Row, Update, case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.config import settings
from guitar_dice.db.models import User
from guitar_dice.exceptions import DatabaseError, UserNotFoundError
from guitar_dice.models.domain import (
    DailyLimitReached,
    QuotaDenied,
    QuotaSnapshot,
    UsageStatus,
)
from guitar_dice.observability.logging import get_logger
from guitar_dice.observability.metrics import metrics
from guitar_dice.services.subscriptions import is_premium

logger = get_logger(__name__)

# Columns returned by every quota update
_SNAPSHOT_COLUMNS = (
    User.id,
    User.dice_rolls_used,
    User.dice_rolls_limit,
    User.extra_roll_tokens,
    User.ads_watched_count,
    User.rolls_reset_date,
    User.is_test_user,
)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _utc_today() -> date:
    """Daily resets follow the UTC calendar day."""
    return _utc_now().date()


def _reset_due(reset_date: date | None, today: date) -> bool:
    return reset_date is None or reset_date != today


def _to_snapshot(row: Row) -> QuotaSnapshot:
    return QuotaSnapshot(
        user_id=row.id,
        dice_rolls_used=row.dice_rolls_used,
        dice_rolls_limit=row.dice_rolls_limit,
        extra_roll_tokens=row.extra_roll_tokens,
        ads_watched_count=row.ads_watched_count,
        rolls_reset_date=row.rolls_reset_date,
        is_test_user=row.is_test_user,
    )


class QuotaLedger:
    """
    Atomic dice roll ledger.

    Denials are returned as values (QuotaDenied, DailyLimitReached);
    storage failures raise DatabaseError.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def can_consume(self, user_id: UUID) -> bool:
        """
        Check whether the next consume would succeed.

        Pure read: a due reset is computed, never written.
        """
        user = await self._load_user(user_id)
        if user is None:
            return False
        if user.is_test_user or is_premium(user.subscription_status, user.subscription_expiry):
            return True

        used = 0 if _reset_due(user.rolls_reset_date, _utc_today()) else user.dice_rolls_used
        return used < user.dice_rolls_limit + user.extra_roll_tokens

    async def consume(self, user_id: UUID) -> QuotaSnapshot | QuotaDenied:
        """Spend one dice roll from the base allowance, then from bonus tokens."""
        now = _utc_now()
        today = now.date()

        try:
            user = await self._load_user(user_id)
            if user is None:
                return QuotaDenied(reason="user_not_found", limit_reached=False)

            if user.is_test_user or is_premium(
                user.subscription_status, user.subscription_expiry, now
            ):
                snapshot = await self._execute_snapshot(
                    update(User).where(User.id == user_id).values(updated_at=now)
                )
                await self.session.commit()
                if snapshot is None:
                    return QuotaDenied(reason="user_not_found", limit_reached=False)
                metrics.record_dice_roll("unlimited")
                return snapshot

            reset = await self._execute_snapshot(
                update(User)
                .where(
                    User.id == user_id,
                    or_(User.rolls_reset_date.is_(None), User.rolls_reset_date < today),
                )
                .values(dice_rolls_used=0, rolls_reset_date=today)
            )
            if reset is not None:
                metrics.quota_resets_total.inc()
                logger.debug("dice_rolls_reset", user_id=str(user_id), reset_date=str(today))

            snapshot = await self._execute_snapshot(
                update(User)
                .where(User.id == user_id, User.dice_rolls_used < User.dice_rolls_limit)
                .values(dice_rolls_used=User.dice_rolls_used + 1, updated_at=now)
            )
            outcome = "base"

            if snapshot is None:
                snapshot = await self._execute_snapshot(
                    update(User)
                    .where(
                        User.id == user_id,
                        User.dice_rolls_used >= User.dice_rolls_limit,
                        User.extra_roll_tokens > 0,
                    )
                    .values(
                        dice_rolls_used=User.dice_rolls_used + 1,
                        extra_roll_tokens=User.extra_roll_tokens - 1,
                        updated_at=now,
                    )
                )
                outcome = "token"

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            metrics.record_error("database", "consume")
            logger.error("dice_roll_consume_failed", user_id=str(user_id), error=str(e))
            raise DatabaseError(f"Failed to consume dice roll: {e}") from e

        if snapshot is None:
            metrics.record_dice_roll("denied")
            logger.info("dice_roll_denied", user_id=str(user_id))
            return QuotaDenied()

        metrics.record_dice_roll(outcome)
        logger.info(
            "dice_roll_consumed",
            user_id=str(user_id),
            source=outcome,
            used=snapshot.dice_rolls_used,
            remaining=snapshot.remaining,
        )
        return snapshot

    async def grant_bonus_token(self, user_id: UUID) -> QuotaSnapshot | DailyLimitReached:
        """
        Credit one bonus token for a watched ad.

        The daily ad counter restarts at 1 on the first grant of a new day.
        """
        now = _utc_now()
        today = now.date()
        cap = settings.daily_ad_reward_limit
        new_day = or_(User.ads_watch_date.is_(None), User.ads_watch_date < today)

        try:
            snapshot = await self._execute_snapshot(
                update(User)
                .where(User.id == user_id, or_(new_day, User.ads_watched_count < cap))
                .values(
                    extra_roll_tokens=User.extra_roll_tokens + 1,
                    ads_watched_count=case((new_day, 1), else_=User.ads_watched_count + 1),
                    ads_watch_date=today,
                    total_ads_watched=User.total_ads_watched + 1,
                    updated_at=now,
                )
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            metrics.record_error("database", "grant_bonus_token")
            logger.error("bonus_token_grant_failed", user_id=str(user_id), error=str(e))
            raise DatabaseError(f"Failed to grant bonus token: {e}") from e

        if snapshot is not None:
            metrics.record_bonus_token("granted")
            logger.info(
                "bonus_token_granted",
                user_id=str(user_id),
                extra_roll_tokens=snapshot.extra_roll_tokens,
                ads_watched_count=snapshot.ads_watched_count,
            )
            return snapshot

        user = await self._load_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        metrics.record_bonus_token("daily_limit")
        logger.info("bonus_token_daily_limit", user_id=str(user_id), daily_limit=cap)
        return DailyLimitReached(ads_watched_count=user.ads_watched_count, daily_limit=cap)

    async def get_status(self, user_id: UUID) -> UsageStatus:
        """Day-aware usage view. Nothing is persisted."""
        user = await self._load_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if user.is_test_user:
            return UsageStatus.unlimited()

        today = _utc_today()
        used = 0 if _reset_due(user.rolls_reset_date, today) else user.dice_rolls_used
        ads = 0 if _reset_due(user.ads_watch_date, today) else user.ads_watched_count
        premium = is_premium(user.subscription_status, user.subscription_expiry)

        return UsageStatus(
            dice_rolls_used=used,
            dice_rolls_limit=user.dice_rolls_limit,
            extra_roll_tokens=user.extra_roll_tokens,
            ads_watched_count=ads,
            can_use_dice_roll=premium or used < user.dice_rolls_limit + user.extra_roll_tokens,
            is_test_user=False,
        )

    async def reset_daily_ads(self, user_id: UUID) -> QuotaSnapshot:
        """Clear the daily ad counter (admin maintenance)."""
        try:
            snapshot = await self._execute_snapshot(
                update(User)
                .where(User.id == user_id)
                .values(ads_watched_count=0, ads_watch_date=None, updated_at=_utc_now())
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DatabaseError(f"Failed to reset daily ads: {e}") from e

        if snapshot is None:
            raise UserNotFoundError(user_id)

        logger.info("daily_ads_reset", user_id=str(user_id))
        return snapshot

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _load_user(self, user_id: UUID) -> Row | None:
        result = await self.session.execute(
            select(
                User.id,
                User.dice_rolls_used,
                User.dice_rolls_limit,
                User.extra_roll_tokens,
                User.ads_watched_count,
                User.ads_watch_date,
                User.rolls_reset_date,
                User.is_test_user,
                User.subscription_status,
                User.subscription_expiry,
            ).where(User.id == user_id)
        )
        return result.one_or_none()

    async def _execute_snapshot(self, stmt: Update) -> QuotaSnapshot | None:
        """Run a guarded update; None means the guard matched no row."""
        result = await self.session.execute(
            stmt.returning(*_SNAPSHOT_COLUMNS).execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        return _to_snapshot(row) if row is not None else None
