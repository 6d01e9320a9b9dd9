"""
Subscription enums, partial updates and typed billing events
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel


class SubscriptionTier(str, Enum):
    NONE = "none"
    FREE = "free"
    PAID = "paid"


class SubscriptionStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class UserRole(str, Enum):
    USER = "user"
    TRAINER = "trainer"
    ADMIN = "admin"


class SubscriptionUpdate(BaseModel):
    """
    Partial update of a subscription record.

    Only fields that were explicitly set are applied. Setting a field to
    None clears it; leaving it out keeps the stored value.
    """
    subscription_tier: Optional[SubscriptionTier] = None
    subscription_status: Optional[SubscriptionStatus] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    subscription_end_date: Optional[datetime] = None

    def provided(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


# Stripe subscription statuses collapsed onto the local status set
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_provider_status(status: Optional[str]) -> SubscriptionStatus:
    return STRIPE_STATUS_MAP.get(status or "", SubscriptionStatus.INACTIVE)


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


# ---------------------------------------------------------------------------
# Billing events
# ---------------------------------------------------------------------------

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
PAYMENT_FAILED = "invoice.payment_failed"


class BillingEvent(BaseModel):
    event_id: Optional[str] = None
    event_type: str


class CheckoutCompleted(BillingEvent):
    event_type: str = CHECKOUT_COMPLETED
    user_id: Optional[int] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None


class SubscriptionUpdated(BillingEvent):
    event_type: str = SUBSCRIPTION_UPDATED
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    current_period_end: Optional[datetime] = None


class SubscriptionDeleted(BillingEvent):
    event_type: str = SUBSCRIPTION_DELETED
    subscription_id: Optional[str] = None


class PaymentFailed(BillingEvent):
    event_type: str = PAYMENT_FAILED
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class UnhandledEvent(BillingEvent):
    pass


ParsedEvent = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, PaymentFailed, UnhandledEvent]


def _field(obj, key, default=None):
    # Stripe objects behave like dicts
    if obj is None:
        return default
    try:
        value = obj.get(key, default)
    except AttributeError:
        value = getattr(obj, key, default)
    return default if value is None else value


def _expandable_id(value) -> Optional[str]:
    # Expanded Stripe references arrive as objects, collapsed ones as ids
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def subscription_period_end(subscription) -> Optional[datetime]:
    period_end = _field(subscription, "current_period_end")
    if period_end is None:
        # Newer API versions report the period on subscription items
        items = _field(_field(subscription, "items"), "data", [])
        if items:
            period_end = _field(items[0], "current_period_end")
    return from_unix(period_end)


def _invoice_subscription_id(invoice) -> Optional[str]:
    subscription = _expandable_id(_field(invoice, "subscription"))
    if subscription:
        return subscription
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _expandable_id(_field(details, "subscription"))


def _metadata_user_id(session) -> Optional[int]:
    metadata = _field(session, "metadata", {})
    raw = _field(metadata, "userId") or _field(session, "client_reference_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def parse_event(event) -> ParsedEvent:
    """Turn a verified Stripe event (or an equivalent dict) into a typed billing event."""
    event_type = _field(event, "type", "")
    event_id = _field(event, "id")
    obj = _field(_field(event, "data"), "object", {})

    if event_type == CHECKOUT_COMPLETED:
        return CheckoutCompleted(
            event_id=event_id,
            user_id=_metadata_user_id(obj),
            subscription_id=_expandable_id(_field(obj, "subscription")),
            customer_id=_expandable_id(_field(obj, "customer")),
        )
    if event_type == SUBSCRIPTION_UPDATED:
        return SubscriptionUpdated(
            event_id=event_id,
            subscription_id=_field(obj, "id"),
            status=_field(obj, "status"),
            current_period_end=subscription_period_end(obj),
        )
    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(event_id=event_id, subscription_id=_field(obj, "id"))
    if event_type == PAYMENT_FAILED:
        return PaymentFailed(
            event_id=event_id,
            customer_id=_expandable_id(_field(obj, "customer")),
            subscription_id=_invoice_subscription_id(obj),
        )
    return UnhandledEvent(event_id=event_id, event_type=event_type)
