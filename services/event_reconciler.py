"""
Event Reconciler - applies verified Stripe webhook events to subscription records

Event              Lookup                        Effect
-----------------  ----------------------------  ---------------------------------------------
checkout completed user id from session metadata tier=paid, status=active, subscription id set
subscription upd.  stripe_subscription_id        status from Stripe, period end when present
subscription del.  stripe_subscription_id        tier=free, status=canceled, subscription id cleared
payment failed     subscription id, then         status=past_due (tier unchanged)
                   stripe_customer_id

Every handler overwrites fields instead of toggling them, so redelivered
events leave the record as the first delivery did. Unknown event types are
acknowledged and ignored; events whose subject matches no record are logged
and skipped. Writes are optimistic per record (see UserRepository.update_with_retry).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crud.user import UserRepository
from database_models import User
from models.subscription import (
    BillingEvent,
    CheckoutCompleted,
    ParsedEvent,
    PaymentFailed,
    SubscriptionDeleted,
    SubscriptionStatus,
    SubscriptionTier,
    SubscriptionUpdate,
    SubscriptionUpdated,
    map_provider_status,
    parse_event,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    event_type: str
    applied: bool
    user_id: Optional[int] = None
    reason: Optional[str] = None


class EventReconciler:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_repo = UserRepository(db)

    async def handle(self, event) -> ReconcileResult:
        """Apply one verified event. Accepts a Stripe event or an already parsed one."""
        parsed: ParsedEvent = event if isinstance(event, BillingEvent) else parse_event(event)
        logger.info(f"Processing Stripe webhook event: {parsed.event_type} (ID: {parsed.event_id})")

        if isinstance(parsed, CheckoutCompleted):
            return await self._checkout_completed(parsed)
        if isinstance(parsed, SubscriptionUpdated):
            return await self._subscription_updated(parsed)
        if isinstance(parsed, SubscriptionDeleted):
            return await self._subscription_deleted(parsed)
        if isinstance(parsed, PaymentFailed):
            return await self._payment_failed(parsed)

        logger.info(f"Unhandled event type: {parsed.event_type}")
        return ReconcileResult(parsed.event_type, applied=False, reason="ignored")

    def _unmatched(self, event: ParsedEvent, key: str) -> ReconcileResult:
        logger.warning(f"No subscription record for {event.event_type} ({key}); event skipped")
        return ReconcileResult(event.event_type, applied=False, reason="unmatched")

    async def _checkout_completed(self, event: CheckoutCompleted) -> ReconcileResult:
        if event.user_id is None or not event.subscription_id:
            logger.error(
                f"Checkout session event {event.event_id} is missing userId metadata or subscription id; dropped"
            )
            return ReconcileResult(event.event_type, applied=False, reason="incomplete")

        def build(user: User) -> SubscriptionUpdate:
            previous = user.stripe_subscription_id
            if previous and previous != event.subscription_id:
                logger.warning(
                    f"User {user.id} completed checkout for {event.subscription_id} "
                    f"while holding {previous}; the older subscription is no longer tracked"
                )
            fields = {
                "subscription_tier": SubscriptionTier.PAID,
                "subscription_status": SubscriptionStatus.ACTIVE,
                "stripe_subscription_id": event.subscription_id,
            }
            if event.customer_id and not user.stripe_customer_id:
                # Customer ids are set once and never replaced
                fields["stripe_customer_id"] = event.customer_id
            return SubscriptionUpdate(**fields)

        user = await self.user_repo.update_with_retry(
            lambda refresh: self.user_repo.get_user_by_id(event.user_id, refresh=refresh), build
        )
        if user is None:
            return self._unmatched(event, f"user {event.user_id}")
        logger.info(f"User {user.id} subscribed successfully ({event.subscription_id})")
        return ReconcileResult(event.event_type, applied=True, user_id=user.id)

    async def _subscription_updated(self, event: SubscriptionUpdated) -> ReconcileResult:
        if not event.subscription_id:
            return self._unmatched(event, "no subscription id")

        def build(user: User) -> SubscriptionUpdate:
            fields = {"subscription_status": map_provider_status(event.status)}
            if event.current_period_end is not None:
                fields["subscription_end_date"] = event.current_period_end
            return SubscriptionUpdate(**fields)

        user = await self.user_repo.update_with_retry(
            lambda refresh: self.user_repo.get_user_by_subscription_id(event.subscription_id, refresh=refresh),
            build,
        )
        if user is None:
            return self._unmatched(event, f"subscription {event.subscription_id}")
        logger.info(f"Subscription {event.subscription_id} updated: status={user.subscription_status}")
        return ReconcileResult(event.event_type, applied=True, user_id=user.id)

    async def _subscription_deleted(self, event: SubscriptionDeleted) -> ReconcileResult:
        if not event.subscription_id:
            return self._unmatched(event, "no subscription id")

        user = await self.user_repo.update_with_retry(
            lambda refresh: self.user_repo.get_user_by_subscription_id(event.subscription_id, refresh=refresh),
            lambda user: SubscriptionUpdate(
                subscription_tier=SubscriptionTier.FREE,
                subscription_status=SubscriptionStatus.CANCELED,
                stripe_subscription_id=None,
            ),
        )
        if user is None:
            return self._unmatched(event, f"subscription {event.subscription_id}")
        logger.info(f"Subscription {event.subscription_id} canceled; user {user.id} moved to the free tier")
        return ReconcileResult(event.event_type, applied=True, user_id=user.id)

    async def _payment_failed(self, event: PaymentFailed) -> ReconcileResult:
        async def load(refresh: bool) -> Optional[User]:
            user = None
            if event.subscription_id:
                user = await self.user_repo.get_user_by_subscription_id(event.subscription_id, refresh=refresh)
            if user is None and event.customer_id:
                user = await self.user_repo.get_user_by_customer_id(event.customer_id, refresh=refresh)
            return user

        user = await self.user_repo.update_with_retry(
            load, lambda user: SubscriptionUpdate(subscription_status=SubscriptionStatus.PAST_DUE)
        )
        if user is None:
            return self._unmatched(event, f"customer {event.customer_id}")
        logger.info(f"Payment failed for user {user.id}; status set to past_due")
        return ReconcileResult(event.event_type, applied=True, user_id=user.id)
