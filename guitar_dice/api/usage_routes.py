"""
Usage API routes - Dice roll quota status, consumption and ad rewards.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.api.dependencies import get_current_user_id, rate_limit, verify_same_origin
from guitar_dice.config import settings
from guitar_dice.db.session import get_write_db
from guitar_dice.exceptions import UserNotFoundError
from guitar_dice.models.api import (
    AdRewardResponse,
    DiceRollResponse,
    LimitReachedResponse,
    UsageStatusResponse,
)
from guitar_dice.models.domain import DailyLimitReached, QuotaDenied
from guitar_dice.observability.metrics import metrics
from guitar_dice.services.quota import QuotaLedger
from guitar_dice.services.rate_limiter import mutation_rate_limiter

router = APIRouter(prefix="/api/usage", tags=["usage"])

AD_REWARDS_DISABLED_MESSAGE = (
    "Ad system temporarily disabled for security improvements. "
    "Please upgrade to Premium for unlimited generations."
)


@router.get("/status", response_model=UsageStatusResponse)
async def usage_status(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
) -> UsageStatusResponse:
    """Day-aware usage view; a due reset is reported but not written."""
    usage = await QuotaLedger(db).get_status(user_id)

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


@router.post(
    "/increment-dice-roll",
    response_model=DiceRollResponse,
    responses={status.HTTP_403_FORBIDDEN: {"model": LimitReachedResponse}},
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(mutation_rate_limiter, "dice roll")),
    ],
)
async def increment_dice_roll(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
) -> DiceRollResponse | JSONResponse:
    """Consume one dice roll. 403 with limitReached when nothing is left."""
    result = await QuotaLedger(db).consume(user_id)

    if isinstance(result, QuotaDenied):
        if result.reason == "user_not_found":
            raise UserNotFoundError(user_id)
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=LimitReachedResponse().model_dump(by_alias=True),
        )

    return DiceRollResponse(
        dice_rolls_used=result.dice_rolls_used,
        dice_rolls_limit=result.dice_rolls_limit,
        extra_roll_tokens=result.extra_roll_tokens,
        remaining_rolls=result.remaining,
    )


@router.post(
    "/watch-ad-reward",
    response_model=AdRewardResponse,
    responses={
        status.HTTP_429_TOO_MANY_REQUESTS: {"model": AdRewardResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": AdRewardResponse},
    },
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(mutation_rate_limiter, "ad reward")),
    ],
)
async def watch_ad_reward(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
) -> AdRewardResponse | JSONResponse:
    """
    Grant one bonus token for a watched ad.

    Disabled (503) until ad views can be attested server-side.
    """
    if not settings.ad_rewards_enabled:
        metrics.record_bonus_token("disabled")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=AdRewardResponse(
                success=False,
                message=AD_REWARDS_DISABLED_MESSAGE,
                temporarily_disabled=True,
            ).model_dump(by_alias=True, exclude_none=True),
        )

    result = await QuotaLedger(db).grant_bonus_token(user_id)

    if isinstance(result, DailyLimitReached):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=AdRewardResponse(
                success=False,
                message=f"Daily ad limit reached ({result.daily_limit} ads per day)",
                ads_watched_count=result.ads_watched_count,
                daily_limit_reached=True,
            ).model_dump(by_alias=True, exclude_none=True),
        )

    return AdRewardResponse(
        success=True,
        message="Extra dice roll earned!",
        extra_roll_tokens=result.extra_roll_tokens,
        ads_watched_count=result.ads_watched_count,
    )
