"""
Admin API routes - Maintenance operations for operators and cron jobs.

Protected by the X-Admin-Token header.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guitar_dice.api.dependencies import require_admin_token
from guitar_dice.db.session import get_session_factory, get_write_db
from guitar_dice.models.api import ProcessRewardsResponse, UsageStatusResponse
from guitar_dice.observability.logging import get_logger
from guitar_dice.services.quota import QuotaLedger
from guitar_dice.services.referrals import ReferralRewardProcessor

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_token)])


@router.post("/referrals/process-rewards", response_model=ProcessRewardsResponse)
async def process_referral_rewards(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ProcessRewardsResponse:
    """Grant pending referral rewards. Safe to call repeatedly or concurrently."""
    report = await ReferralRewardProcessor(session_factory).process_rewards()
    logger.info("admin_referral_rewards_processed", processed=report.processed)
    return ProcessRewardsResponse(processed=report.processed, errors=report.errors)


@router.post("/users/{user_id}/reset-daily-ads", response_model=UsageStatusResponse)
async def reset_daily_ads(
    user_id: UUID,
    db: AsyncSession = Depends(get_write_db),
) -> UsageStatusResponse:
    ledger = QuotaLedger(db)
    await ledger.reset_daily_ads(user_id)
    usage = await ledger.get_status(user_id)
    logger.info("admin_daily_ads_reset", user_id=str(user_id))
    return UsageStatusResponse(
        dice_rolls_used=usage.dice_rolls_used,
        dice_rolls_limit=usage.dice_rolls_limit,
        extra_roll_tokens=usage.extra_roll_tokens,
        total_available_rolls=usage.total_available,
        remaining_rolls=usage.remaining,
        ads_watched_count=usage.ads_watched_count,
        can_use_dice_roll=usage.can_use_dice_roll,
        is_test_user=usage.is_test_user,
    )
