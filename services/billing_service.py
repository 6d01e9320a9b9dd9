"""
Billing Service - subscription lifecycle driven from the user's side

Free-tier enrollment, checkout initiation, cancellation requests and status
reads. None of these mark a subscription paid or canceled: those transitions
happen only when Stripe confirms them through the webhook (see
services/event_reconciler.py).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import FREE_TIER_FEATURES, PAID_TIER_FEATURES, PLAN_FREE, PLAN_PAID, Settings
from crud.user import UserRepository
from database_models import User
from errors import AlreadySubscribed, NoActiveSubscription, NotFound
from models.subscription import SubscriptionStatus, SubscriptionTier, SubscriptionUpdate
from services.billing_provider import CheckoutSession, ProviderSubscription
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def subscription_snapshot(user: User) -> dict:
    end_date = as_utc(user.subscription_end_date)
    return {
        "tier": user.subscription_tier,
        "status": user.subscription_status,
        "stripeCustomerId": user.stripe_customer_id,
        "stripeSubscriptionId": user.stripe_subscription_id,
        "subscriptionEndDate": end_date.isoformat() if end_date else None,
    }


def pricing_tiers(settings: Settings) -> list:
    return [
        {
            "id": PLAN_FREE,
            "name": "Free Subscriber",
            "price": 0,
            "features": FREE_TIER_FEATURES,
        },
        {
            "id": PLAN_PAID,
            "name": "Premium Member",
            "price": settings.paid_tier_price,
            "priceId": settings.stripe_price_id,
            "features": PAID_TIER_FEATURES,
        },
    ]


class BillingService:
    """
    Service class for handling billing-related business logic.

    Args:
        db: AsyncSession for the current unit of work
        provider: billing provider adapter (StripeBillingProvider in production)
        checkout_locks: per-user lock registry shared by the process
    """

    def __init__(self, db: AsyncSession, provider, checkout_locks: Optional[KeyedLock] = None):
        self.db = db
        self.provider = provider
        self.checkout_locks = checkout_locks or KeyedLock("checkout")
        self.user_repo = UserRepository(db)

    async def _require_user(self, user_id: int, refresh: bool = False) -> User:
        user = await self.user_repo.get_user_by_id(user_id, refresh=refresh)
        if user is None:
            raise NotFound("User not found")
        return user

    async def enroll_free(self, user_id: int) -> User:
        """
        Move a user with no subscription onto the free tier.

        Raises:
            AlreadySubscribed: the user already holds the free or paid tier
        """
        def build(user: User) -> SubscriptionUpdate:
            if user.subscription_tier != SubscriptionTier.NONE.value:
                raise AlreadySubscribed("You already have a subscription")
            return SubscriptionUpdate(
                subscription_tier=SubscriptionTier.FREE,
                subscription_status=SubscriptionStatus.ACTIVE,
            )

        user = await self.user_repo.update_with_retry(
            lambda refresh: self._require_user(user_id, refresh=refresh), build
        )
        logger.info(f"User {user_id} enrolled in the free tier")
        return user

    async def start_checkout(self, user_id: int) -> CheckoutSession:
        """
        Start a Stripe-hosted checkout for the paid tier.

        Creates the user's Stripe customer on first use and commits its id
        before the checkout session is requested, then reuses it after that.
        The record's tier and status are left alone: the user becomes paid
        only when the checkout-completed event arrives.

        Raises:
            NotFound: unknown user
            AlreadySubscribed: the user is already paid and active
            ProviderError: Stripe call failed
        """
        async with self.checkout_locks.hold(user_id):
            user = await self._require_user(user_id, refresh=True)
            if (
                user.subscription_tier == SubscriptionTier.PAID.value
                and user.subscription_status == SubscriptionStatus.ACTIVE.value
            ):
                raise AlreadySubscribed("You already have an active paid subscription")

            customer_id = user.stripe_customer_id
            if not customer_id:
                created_id = await self.provider.create_customer(user.id, user.email, user.name)

                def build(current: User) -> Optional[SubscriptionUpdate]:
                    # Set at most once; a concurrent writer may have won
                    if current.stripe_customer_id:
                        return None
                    return SubscriptionUpdate(stripe_customer_id=created_id)

                user = await self.user_repo.update_with_retry(
                    lambda refresh: self._require_user(user_id, refresh=refresh), build
                )
                # Committed while the lock is held: the next checkout must see
                # this customer, even if session creation below fails
                await self.db.commit()
                customer_id = user.stripe_customer_id
                logger.info(f"Stripe customer {customer_id} attached to user {user_id}")

            session = await self.provider.create_checkout_session(user.id, customer_id)
            logger.info(f"Checkout session {session.session_id} created for user {user_id}")
            return session

    async def request_cancellation(self, user_id: int) -> ProviderSubscription:
        """
        Ask Stripe to cancel at the end of the current period.

        The local record is not touched: the user keeps the paid tier until
        Stripe sends the subscription-deleted event.

        Raises:
            NoActiveSubscription: the user has no Stripe subscription
            ProviderError: Stripe call failed
        """
        user = await self._require_user(user_id)
        if not user.stripe_subscription_id:
            raise NoActiveSubscription("No active subscription found")

        subscription = await self.provider.cancel_at_period_end(user.stripe_subscription_id)
        if subscription.current_period_end is None:
            subscription.current_period_end = as_utc(user.subscription_end_date)
        logger.info(
            f"Cancellation requested for subscription {user.stripe_subscription_id} "
            f"(user {user_id}), ends at {subscription.current_period_end}"
        )
        return subscription

    async def get_subscription_status(self, user_id: int) -> dict:
        """Local tier/status plus live Stripe details when a subscription exists."""
        user = await self._require_user(user_id)
        details = None
        if user.stripe_subscription_id:
            subscription = await self.provider.retrieve_subscription(user.stripe_subscription_id)
            details = {
                "status": subscription.status,
                "currentPeriodEnd": (
                    subscription.current_period_end.isoformat() if subscription.current_period_end else None
                ),
                "cancelAtPeriodEnd": subscription.cancel_at_period_end,
            }
        return {
            "tier": user.subscription_tier,
            "status": user.subscription_status,
            "subscriptionEndDate": subscription_snapshot(user)["subscriptionEndDate"],
            "details": details,
        }
