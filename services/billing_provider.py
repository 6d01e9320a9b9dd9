"""
Billing provider adapter - the only module that talks to Stripe.

Everything the engine needs from Stripe goes through StripeBillingProvider,
which returns plain dataclasses and turns Stripe failures into the service
error taxonomy (ProviderError, UnverifiableEvent).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import stripe

from config.settings import Settings
from errors import ProviderError, UnverifiableEvent
from models.subscription import subscription_period_end

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    session_id: str
    url: str


@dataclass
class ProviderSubscription:
    subscription_id: str
    status: str
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool


def to_provider_subscription(subscription) -> ProviderSubscription:
    return ProviderSubscription(
        subscription_id=subscription.get("id"),
        status=subscription.get("status"),
        current_period_end=subscription_period_end(subscription),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
    )


class StripeBillingProvider:
    """
    Stripe-backed billing provider.

    Uses the async Stripe resource methods with the API key passed on each
    call, so nothing touches the global stripe.api_key.
    """

    def __init__(self, settings: Settings):
        self.api_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret
        self.price_id = settings.stripe_price_id
        self.client_url = settings.client_url.rstrip("/")
        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

    def _require_api_key(self) -> str:
        if not self.api_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot call Stripe.")
            raise ProviderError("Billing provider is not configured")
        return self.api_key

    async def create_customer(self, user_id: int, email: str, name: Optional[str] = None) -> str:
        """Create a Stripe customer for a user and return its id."""
        api_key = self._require_api_key()
        try:
            customer = await stripe.Customer.create_async(
                api_key=api_key,
                email=email,
                name=name,
                metadata={"userId": str(user_id)},
                # Two racing requests for the same user get the same customer back
                idempotency_key=f"customer-user-{user_id}",
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer for user {user_id}: {e}", exc_info=True)
            raise ProviderError(f"Failed to create customer: {e.user_message or e}")
        return customer.id

    async def create_checkout_session(self, user_id: int, customer_id: str) -> CheckoutSession:
        """Create a subscription-mode checkout session tagged with the user id."""
        api_key = self._require_api_key()
        if not self.price_id:
            logger.error("STRIPE_PRICE_ID is not set. Cannot create checkout session.")
            raise ProviderError("Billing provider price is not configured")
        try:
            session = await stripe.checkout.Session.create_async(
                api_key=api_key,
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": self.price_id, "quantity": 1}],
                success_url=f"{self.client_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.client_url}/subscription/cancel",
                client_reference_id=str(user_id),
                metadata={"userId": str(user_id)},
                subscription_data={"metadata": {"userId": str(user_id)}},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session for user {user_id}: {e}", exc_info=True)
            raise ProviderError(f"Failed to create checkout session: {e.user_message or e}")
        return CheckoutSession(session_id=session.id, url=session.url)

    async def cancel_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        """Ask Stripe to end the subscription when the current period runs out."""
        api_key = self._require_api_key()
        try:
            subscription = await stripe.Subscription.modify_async(
                subscription_id,
                api_key=api_key,
                cancel_at_period_end=True,
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to cancel subscription {subscription_id}: {e}", exc_info=True)
            raise ProviderError(f"Failed to cancel subscription: {e.user_message or e}")
        return to_provider_subscription(subscription)

    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        api_key = self._require_api_key()
        try:
            subscription = await stripe.Subscription.retrieve_async(subscription_id, api_key=api_key)
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve subscription {subscription_id}: {e}", exc_info=True)
            raise ProviderError(f"Failed to retrieve subscription: {e.user_message or e}")
        return to_provider_subscription(subscription)

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """
        Verify a webhook payload against its Stripe-Signature header.

        Raises:
            UnverifiableEvent: missing secret, missing header, bad signature or
                malformed payload. Nothing from an unverified payload is used.
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
            raise UnverifiableEvent("Webhook secret not configured")
        if not signature:
            logger.error("Missing Stripe-Signature header")
            raise UnverifiableEvent("Missing signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {e}")
            raise UnverifiableEvent("Invalid webhook signature")
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise UnverifiableEvent("Invalid payload format")
