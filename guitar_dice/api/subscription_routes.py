"""
Subscription API routes - Status and the Stripe webhook.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guitar_dice.api.dependencies import get_current_user_id, get_stripe_provider
from guitar_dice.db.session import get_read_db, get_session_factory
from guitar_dice.models.api import MessageResponse, SubscriptionStatusResponse
from guitar_dice.observability.logging import get_logger
from guitar_dice.services.referrals import ReferralRewardProcessor
from guitar_dice.services.stripe_provider import StripeProvider
from guitar_dice.services.subscriptions import SubscriptionService

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["subscription"])


@router.get("/subscription/status", response_model=SubscriptionStatusResponse)
async def subscription_status(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_read_db),
) -> SubscriptionStatusResponse:
    data = await SubscriptionService(db).get_status(user_id)
    return SubscriptionStatusResponse(
        has_active_subscription=data.is_active,
        subscription_status=data.status,
        subscription_expiry=data.expiry,
    )


@router.post("/stripe/webhook", response_model=MessageResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    provider: StripeProvider = Depends(get_stripe_provider),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> MessageResponse:
    """
    Apply subscription changes, then grant any referral rewards they unlock.

    Signed by Stripe, not by a browser: no session and no CSRF check.
    """
    payload = await request.body()
    event = provider.verify_webhook(payload, stripe_signature)

    if event.customer_id is None or event.status is None:
        logger.info("stripe_webhook_ignored", event_id=event.event_id, event_type=event.event_type)
        return MessageResponse(message="Event ignored")

    async with session_factory() as session:
        await SubscriptionService(session).update_status(
            event.customer_id,
            event.status,
            event.current_period_end,
            subscription_id=event.subscription_id,
        )

    report = await ReferralRewardProcessor(session_factory).process_rewards()
    if report.errors:
        logger.warning("stripe_webhook_reward_errors", errors=report.errors)

    return MessageResponse(message="Webhook processed")
