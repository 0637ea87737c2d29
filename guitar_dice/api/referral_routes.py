"""
Referral API routes - Dashboard, code generation and code application.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.api.dependencies import get_current_user_id, rate_limit, verify_same_origin
from guitar_dice.db.session import get_read_db, get_write_db
from guitar_dice.models.api import (
    ApplyReferralRequest,
    ApplyReferralResponse,
    ReferralCodeResponse,
    ReferralDashboardResponse,
    ReferralItem,
)
from guitar_dice.services.rate_limiter import referral_rate_limiter
from guitar_dice.services.referrals import ReferralService

router = APIRouter(prefix="/api/referrals", tags=["referrals"])


@router.get("/dashboard", response_model=ReferralDashboardResponse)
async def referral_dashboard(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_read_db),
) -> ReferralDashboardResponse:
    stats = await ReferralService(db).get_stats(user_id)

    return ReferralDashboardResponse(
        referral_code=stats.referral_code,
        referrals=[
            ReferralItem(
                id=r.referral_id,
                referee_user_id=r.referee_user_id,
                referral_code=r.referral_code,
                signup_date=r.signup_date,
                reward_granted=r.reward_granted,
                reward_granted_date=r.reward_granted_date,
            )
            for r in stats.referrals
        ],
        total_referred=stats.total_referred,
        total_rewards_pending=stats.total_rewards_pending,
        referral_rewards_earned=stats.referral_rewards_earned,
    )


@router.post(
    "/generate-code",
    response_model=ReferralCodeResponse,
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(referral_rate_limiter, "generate referral code")),
    ],
)
async def generate_referral_code(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
) -> ReferralCodeResponse:
    """Return the caller's referral code, creating it on first use."""
    code, created = await ReferralService(db).generate_code(user_id)
    message = (
        "Referral code generated successfully!" if created else "You already have a referral code"
    )
    return ReferralCodeResponse(referral_code=code, message=message)


@router.post(
    "/apply",
    response_model=ApplyReferralResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ApplyReferralResponse}},
    dependencies=[
        Depends(verify_same_origin),
        Depends(rate_limit(referral_rate_limiter, "referral apply")),
    ],
)
async def apply_referral_code(
    request: ApplyReferralRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_write_db),
) -> ApplyReferralResponse | JSONResponse:
    result = await ReferralService(db).apply_code(user_id, request.referral_code)
    response = ApplyReferralResponse(success=result.success, message=result.message)

    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=response.model_dump(by_alias=True),
        )
    return response
