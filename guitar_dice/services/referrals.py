"""
Referral Service - Referral codes, code application and reward processing.

NO DICTIONARIES - All operations use strongly typed domain models.

A referrer earns one month of subscription for each referee who becomes an
active subscriber. The reward is granted at most once per referral: the
claim (reward_granted false -> true) and the expiry extension commit in the
same transaction, and the extension only runs when the claim matched a row.
"""

import secrets
import string
import time
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guitar_dice.db.expressions import one_month_after
from guitar_dice.db.models import Referral, User
from guitar_dice.exceptions import (
    DatabaseError,
    GuitarDiceError,
    ReferralCodeError,
    UserNotFoundError,
)
from guitar_dice.models.api import SubscriptionStatus
from guitar_dice.models.domain import (
    ReferralApplyResult,
    ReferralData,
    ReferralStats,
    RewardReport,
)
from guitar_dice.observability.logging import get_logger
from guitar_dice.observability.metrics import metrics
from guitar_dice.observability.tracing import trace_operation
from guitar_dice.services.subscriptions import as_utc

logger = get_logger(__name__)

REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_referral_code() -> str:
    """Random 8 character code from A-Z and 0-9."""
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


class ReferralService:
    """Referral codes and the referral relationship between users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def generate_code(self, user_id: UUID) -> tuple[str, bool]:
        """
        Return the user's referral code, assigning one on first call.

        Returns (code, created). Unique collisions are retried.
        """
        existing = await self._get_code(user_id)
        if existing is not None:
            return existing, False

        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = generate_referral_code()
            try:
                result = await self.session.execute(
                    update(User)
                    .where(User.id == user_id, User.referral_code.is_(None))
                    .values(referral_code=code, updated_at=_utc_now())
                    .returning(User.referral_code)
                    .execution_options(synchronize_session=False)
                )
                assigned = result.scalar_one_or_none()
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                logger.warning("referral_code_collision", user_id=str(user_id), attempt=attempt)
                continue
            except SQLAlchemyError as e:
                await self.session.rollback()
                raise DatabaseError(f"Failed to assign referral code: {e}") from e

            if assigned is not None:
                logger.info("referral_code_generated", user_id=str(user_id))
                return assigned, True

            # Guard missed: either a concurrent request assigned one, or no user
            existing = await self._get_code(user_id)
            if existing is not None:
                return existing, False

        raise ReferralCodeError(
            f"Failed to generate unique referral code after {MAX_CODE_ATTEMPTS} attempts"
        )

    async def apply_code(self, user_id: UUID, code: str) -> ReferralApplyResult:
        """
        Record that user_id was referred by the owner of code.

        Business rejections are returned, not raised.
        """
        code = code.strip().upper()

        result = await self.session.execute(
            select(User.id, User.referred_by).where(User.id == user_id)
        )
        user = result.one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)

        referrer_id = (
            await self.session.execute(select(User.id).where(User.referral_code == code))
        ).scalar_one_or_none()
        if referrer_id is None:
            return self._rejected("Invalid referral code")
        if referrer_id == user_id:
            return self._rejected("You cannot refer yourself")
        if user.referred_by:
            return self._rejected("You have already used a referral code")

        now = _utc_now()
        try:
            marked = await self.session.execute(
                update(User)
                .where(User.id == user_id, User.referred_by.is_(None))
                .values(referred_by=code, updated_at=now)
                .returning(User.id)
                .execution_options(synchronize_session=False)
            )
            if marked.scalar_one_or_none() is None:
                await self.session.rollback()
                return self._rejected("You have already used a referral code")

            self.session.add(
                Referral(
                    referrer_user_id=referrer_id,
                    referee_user_id=user_id,
                    referral_code=code,
                    signup_date=now,
                    reward_granted=False,
                )
            )
            await self.session.commit()
        except IntegrityError:
            # referee_user_id is unique: a concurrent apply won
            await self.session.rollback()
            return self._rejected("You have already used a referral code")
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DatabaseError(f"Failed to apply referral code: {e}") from e

        metrics.record_referral_applied(True)
        logger.info("referral_applied", user_id=str(user_id), referrer_id=str(referrer_id))
        return ReferralApplyResult(success=True, message="Referral code applied successfully!")

    async def get_stats(self, user_id: UUID) -> ReferralStats:
        result = await self.session.execute(
            select(User.referral_code, User.referral_rewards_earned).where(User.id == user_id)
        )
        user = result.one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)

        rows = await self.session.execute(
            select(Referral)
            .where(Referral.referrer_user_id == user_id)
            .order_by(Referral.created_at.desc())
        )
        referrals = [self._referral_to_domain(r) for r in rows.scalars().all()]

        return ReferralStats(
            referral_code=user.referral_code,
            referrals=referrals,
            referral_rewards_earned=user.referral_rewards_earned,
        )

    async def _get_code(self, user_id: UUID) -> str | None:
        result = await self.session.execute(
            select(User.id, User.referral_code).where(User.id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            raise UserNotFoundError(user_id)
        return row.referral_code

    @staticmethod
    def _rejected(message: str) -> ReferralApplyResult:
        metrics.record_referral_applied(False)
        return ReferralApplyResult(success=False, message=message)

    @staticmethod
    def _referral_to_domain(referral: Referral) -> ReferralData:
        return ReferralData(
            referral_id=referral.id,
            referrer_user_id=referral.referrer_user_id,
            referee_user_id=referral.referee_user_id,
            referral_code=referral.referral_code,
            signup_date=as_utc(referral.signup_date),
            reward_granted=referral.reward_granted,
            reward_granted_date=as_utc(referral.reward_granted_date),
        )


class ReferralRewardProcessor:
    """
    Grants referral rewards for referees with an active subscription.

    Each referral is processed in its own transaction so one failure does not
    roll back rewards already granted in the same run. Safe to run
    concurrently: the claim update only matches an ungranted referral once.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def process_rewards(self) -> RewardReport:
        report = RewardReport()
        started = time.perf_counter()
        now = _utc_now()

        with trace_operation("process_referral_rewards") as span:
            try:
                pending = await self._fetch_pending(now)
            except SQLAlchemyError as e:
                logger.error("referral_pending_fetch_failed", error=str(e))
                report.errors.append(f"Failed to fetch pending referrals: {e}")
                return report

            span.set_attribute("pending", len(pending))

            for referral_id, referrer_id in pending:
                try:
                    granted = await self._grant_reward(referral_id, referrer_id, now)
                except (SQLAlchemyError, GuitarDiceError) as e:
                    logger.error(
                        "referral_reward_failed", referral_id=str(referral_id), error=str(e)
                    )
                    metrics.record_error(type(e).__name__, "process_referral_rewards")
                    report.errors.append(f"Error processing referral {referral_id}: {e}")
                    continue

                if granted:
                    report.processed += 1

            span.set_attribute("processed", report.processed)

        metrics.record_reward_run(report.processed, time.perf_counter() - started)
        logger.info(
            "referral_rewards_processed",
            pending=len(pending),
            processed=report.processed,
            errors=len(report.errors),
        )
        return report

    async def _fetch_pending(self, now: datetime) -> list[tuple[UUID, UUID]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Referral.id, Referral.referrer_user_id)
                .join(User, User.id == Referral.referee_user_id)
                .where(
                    Referral.reward_granted.is_(False),
                    Referral.referrer_user_id.is_not(None),
                    User.subscription_status == SubscriptionStatus.ACTIVE,
                    User.subscription_expiry > now,
                )
                .order_by(Referral.created_at)
            )
            rows = [(row.id, row.referrer_user_id) for row in result.all()]
            await session.commit()
            return rows

    async def _grant_reward(self, referral_id: UUID, referrer_id: UUID, now: datetime) -> bool:
        """Claim one referral and extend the referrer. False if already claimed."""
        async with self.session_factory() as session:
            async with session.begin():
                claimed = await session.execute(
                    update(Referral)
                    .where(Referral.id == referral_id, Referral.reward_granted.is_(False))
                    .values(reward_granted=True, reward_granted_date=now)
                    .returning(Referral.id)
                    .execution_options(synchronize_session=False)
                )
                if claimed.scalar_one_or_none() is None:
                    return False

                extended = await session.execute(
                    update(User)
                    .where(User.id == referrer_id)
                    .values(
                        subscription_status=SubscriptionStatus.ACTIVE,
                        subscription_expiry=one_month_after(User.subscription_expiry, now),
                        referral_rewards_earned=User.referral_rewards_earned + 1,
                        updated_at=now,
                    )
                    .returning(User.subscription_expiry)
                    .execution_options(synchronize_session=False)
                )
                new_expiry = extended.scalar_one_or_none()
                if new_expiry is None:
                    # Raising inside begin() rolls the claim back
                    raise UserNotFoundError(referrer_id)

        logger.info(
            "referral_reward_granted",
            referral_id=str(referral_id),
            referrer_id=str(referrer_id),
            subscription_expiry=str(new_expiry),
        )
        return True
