"""
Stripe Webhook Verification.

NO DICTIONARIES - Verified events are parsed into typed domain models.
"""

from datetime import UTC, datetime
from typing import Any

import stripe

from guitar_dice.exceptions import WebhookVerificationError
from guitar_dice.models.api import SubscriptionStatus
from guitar_dice.models.domain import SubscriptionEvent
from guitar_dice.observability.logging import get_logger

logger = get_logger(__name__)

SUBSCRIPTION_EVENT_PREFIX = "customer.subscription."

# Stripe subscription status -> local subscription status
_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_subscription_status(event_type: str, stripe_status: str | None) -> SubscriptionStatus | None:
    if event_type == f"{SUBSCRIPTION_EVENT_PREFIX}deleted":
        return SubscriptionStatus.CANCELED
    if stripe_status is None:
        return None
    return _STATUS_MAP.get(stripe_status)


def _period_end(subscription: Any) -> datetime | None:
    """current_period_end lives on the subscription or, in newer API versions, on its items."""
    timestamp = subscription.get("current_period_end")
    if timestamp is None:
        items = subscription.get("items") or {}
        data = items.get("data") or []
        if data:
            timestamp = data[0].get("current_period_end")
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=UTC)


class StripeProvider:
    """Verifies Stripe webhook signatures and extracts subscription changes."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    def verify_webhook(self, payload: bytes, signature: str | None) -> SubscriptionEvent:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            WebhookVerificationError: If the signature is missing or invalid
        """
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        if not event.type.startswith(SUBSCRIPTION_EVENT_PREFIX):
            return SubscriptionEvent(
                event_id=event.id,
                event_type=event.type,
                customer_id=None,
                subscription_id=None,
                status=None,
                current_period_end=None,
            )

        subscription = event.data.object
        return SubscriptionEvent(
            event_id=event.id,
            event_type=event.type,
            customer_id=subscription.get("customer"),
            subscription_id=subscription.get("id"),
            status=map_subscription_status(event.type, subscription.get("status")),
            current_period_end=_period_end(subscription),
        )
