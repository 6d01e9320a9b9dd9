"""
Billing Router - subscription endpoints and the Stripe webhook
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_user
from backend.utils.responses import success_response
from database import get_db
from database_models import User
from services.billing_service import BillingService, pricing_tiers
from services.event_reconciler import EventReconciler

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/subscription", tags=["subscription"])


def _billing_service(request: Request, db: AsyncSession) -> BillingService:
    return BillingService(db, request.app.state.billing_provider, request.app.state.checkout_locks)


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Handle Stripe webhook events with signature verification.

    Unverifiable payloads are rejected with 400 and never processed.
    Verified events are acknowledged with 200 whether they changed a record,
    matched nothing, or were of a type this service ignores. Unexpected
    failures propagate as an opaque 500 so Stripe redelivers the event.
    """
    # Get raw request body (required for signature verification)
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    provider = request.app.state.billing_provider
    event = provider.construct_event(payload, signature)

    result = await EventReconciler(db).handle(event)
    return JSONResponse(
        status_code=200,
        content={
            "received": True,
            "event_type": result.event_type,
            "applied": result.applied,
        }
    )


@billing_router.get("/pricing")
async def get_pricing(request: Request):
    """Subscription tiers and prices; no credentials needed"""
    return success_response({"tiers": pricing_tiers(request.app.state.settings)})


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    request: Request,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Start a Stripe Checkout for the paid tier and return its redirect URL"""
    session = await _billing_service(request, db).start_checkout(user.id)
    return success_response({"sessionId": session.session_id, "url": session.url})


@billing_router.post("/cancel")
async def cancel_subscription(
    request: Request,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel at the end of the billing period; access continues until then"""
    subscription = await _billing_service(request, db).request_cancellation(user.id)
    ends_at = subscription.current_period_end
    return success_response(
        {"endsAt": ends_at.isoformat() if ends_at else None},
        message="Subscription will be canceled at the end of the billing period",
    )


@billing_router.get("/status")
async def get_subscription_status(
    request: Request,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    status = await _billing_service(request, db).get_subscription_status(user.id)
    return success_response(status)
