"""
Tests for the billing service: free enrollment, checkout and cancellation
"""
import pytest

from crud.user import UserRepository
from errors import AlreadySubscribed, NoActiveSubscription, NotFound, ProviderError
from models.subscription import CheckoutCompleted, SubscriptionDeleted
from services.billing_service import BillingService, pricing_tiers
from services.event_reconciler import EventReconciler
from tests.conftest import PERIOD_END


@pytest.fixture
def service(test_db, provider):
    return BillingService(test_db, provider)


@pytest.mark.asyncio
async def test_enroll_free_from_none(make_user, service):
    user = await make_user()

    enrolled = await service.enroll_free(user.id)

    assert enrolled.subscription_tier == "free"
    assert enrolled.subscription_status == "active"


@pytest.mark.asyncio
@pytest.mark.parametrize("tier", ["free", "paid"])
async def test_enroll_free_rejects_existing_subscription(make_user, service, tier):
    user = await make_user(subscription_tier=tier, subscription_status="active")

    with pytest.raises(AlreadySubscribed):
        await service.enroll_free(user.id)


@pytest.mark.asyncio
async def test_enroll_free_unknown_user(service):
    with pytest.raises(NotFound):
        await service.enroll_free(12345)


@pytest.mark.asyncio
async def test_start_checkout_creates_customer_once(make_user, service, provider, test_db):
    user = await make_user(subscription_tier="free", subscription_status="active")

    first = await service.start_checkout(user.id)
    second = await service.start_checkout(user.id)

    assert first.url.startswith("https://checkout.stripe.test/")
    assert first.session_id != second.session_id
    assert len(provider.customers) == 1
    customer_id = provider.customers[0][1]
    assert provider.checkout_sessions == [(user.id, customer_id), (user.id, customer_id)]

    stored = await UserRepository(test_db).get_user_by_id(user.id)
    assert stored.stripe_customer_id == customer_id


@pytest.mark.asyncio
async def test_start_checkout_leaves_tier_alone(make_user, service, test_db):
    user = await make_user(subscription_tier="free", subscription_status="active")

    await service.start_checkout(user.id)
    await service.start_checkout(user.id)

    stored = await UserRepository(test_db).get_user_by_id(user.id)
    assert stored.subscription_tier == "free"
    assert stored.subscription_status == "active"
    assert stored.stripe_subscription_id is None


@pytest.mark.asyncio
async def test_start_checkout_reuses_existing_customer(make_user, service, provider):
    user = await make_user(stripe_customer_id="cus_existing")

    await service.start_checkout(user.id)

    assert provider.customers == []
    assert provider.checkout_sessions == [(user.id, "cus_existing")]


@pytest.mark.asyncio
async def test_customer_id_survives_failed_session_creation(make_user, service, provider, provider_error, load_user):
    user = await make_user(subscription_tier="free", subscription_status="active")
    provider.fail_next = provider_error
    provider.fail_method = "create_checkout_session"

    with pytest.raises(ProviderError):
        await service.start_checkout(user.id)
    await service.db.rollback()

    stored = await load_user(user.id)
    assert stored.stripe_customer_id == provider.customers[0][1]

    await service.start_checkout(user.id)
    assert len(provider.customers) == 1
    assert provider.checkout_sessions == [(user.id, stored.stripe_customer_id)]


@pytest.mark.asyncio
async def test_start_checkout_rejects_active_paid_user(make_user, service, provider):
    user = await make_user(subscription_tier="paid", subscription_status="active", stripe_subscription_id="sub_1")

    with pytest.raises(AlreadySubscribed):
        await service.start_checkout(user.id)
    assert provider.checkout_sessions == []


@pytest.mark.asyncio
async def test_start_checkout_allowed_for_past_due_paid_user(make_user, service, provider):
    user = await make_user(
        subscription_tier="paid", subscription_status="past_due",
        stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
    )

    await service.start_checkout(user.id)

    assert provider.checkout_sessions == [(user.id, "cus_1")]


@pytest.mark.asyncio
async def test_start_checkout_provider_failure_changes_nothing(make_user, service, provider, provider_error, test_db):
    user = await make_user(subscription_tier="free", subscription_status="active")
    provider.fail_next = provider_error

    with pytest.raises(ProviderError):
        await service.start_checkout(user.id)

    stored = await UserRepository(test_db).get_user_by_id(user.id)
    assert stored.stripe_customer_id is None
    assert stored.subscription_tier == "free"


@pytest.mark.asyncio
async def test_request_cancellation_without_subscription(make_user, service, provider):
    user = await make_user(subscription_tier="free", subscription_status="active")

    with pytest.raises(NoActiveSubscription):
        await service.request_cancellation(user.id)
    assert provider.cancellations == []


@pytest.mark.asyncio
async def test_request_cancellation_keeps_paid_access(make_user, service, provider, test_db):
    user = await make_user(
        subscription_tier="paid", subscription_status="active",
        stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
    )

    subscription = await service.request_cancellation(user.id)

    assert provider.cancellations == ["sub_1"]
    assert subscription.cancel_at_period_end is True
    assert subscription.current_period_end == PERIOD_END
    stored = await UserRepository(test_db).get_user_by_id(user.id)
    assert stored.subscription_tier == "paid"
    assert stored.subscription_status == "active"
    assert stored.stripe_subscription_id == "sub_1"


@pytest.mark.asyncio
async def test_request_cancellation_provider_failure(make_user, service, provider, provider_error):
    user = await make_user(subscription_tier="paid", subscription_status="active", stripe_subscription_id="sub_1")
    provider.fail_next = provider_error

    with pytest.raises(ProviderError) as exc_info:
        await service.request_cancellation(user.id)
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_status_without_subscription_skips_provider(make_user, service, provider):
    user = await make_user(subscription_tier="free", subscription_status="active")

    status = await service.get_subscription_status(user.id)

    assert status == {"tier": "free", "status": "active", "subscriptionEndDate": None, "details": None}
    assert provider.retrievals == []


@pytest.mark.asyncio
async def test_status_includes_provider_details(make_user, service, provider):
    user = await make_user(subscription_tier="paid", subscription_status="active", stripe_subscription_id="sub_1")

    status = await service.get_subscription_status(user.id)

    assert provider.retrievals == ["sub_1"]
    assert status["details"] == {
        "status": "active",
        "currentPeriodEnd": PERIOD_END.isoformat(),
        "cancelAtPeriodEnd": False,
    }


def test_pricing_tiers_use_configured_price(settings):
    tiers = pricing_tiers(settings)
    assert [tier["id"] for tier in tiers] == ["free", "paid"]
    assert tiers[0]["price"] == 0
    assert tiers[1]["price"] == settings.paid_tier_price
    assert tiers[1]["priceId"] == "price_test"


@pytest.mark.asyncio
async def test_subscription_lifecycle(make_user, service, provider, test_db):
    """none -> free -> checkout -> paid -> cancellation requested -> deleted -> free/canceled"""
    user = await make_user()
    repo = UserRepository(test_db)
    reconciler = EventReconciler(test_db)

    stored = await repo.get_user_by_id(user.id)
    assert (stored.subscription_tier, stored.subscription_status) == ("none", "inactive")

    await service.enroll_free(user.id)
    stored = await repo.get_user_by_id(user.id)
    assert (stored.subscription_tier, stored.subscription_status) == ("free", "active")

    session = await service.start_checkout(user.id)
    assert session.url
    stored = await repo.get_user_by_id(user.id)
    assert stored.stripe_customer_id is not None
    assert (stored.subscription_tier, stored.subscription_status) == ("free", "active")

    await reconciler.handle(CheckoutCompleted(user_id=user.id, subscription_id="sub_1"))
    stored = await repo.get_user_by_id(user.id)
    assert (stored.subscription_tier, stored.subscription_status) == ("paid", "active")
    assert stored.stripe_subscription_id == "sub_1"

    await service.request_cancellation(user.id)
    assert provider.cancellations == ["sub_1"]
    stored = await repo.get_user_by_id(user.id)
    assert (stored.subscription_tier, stored.subscription_status) == ("paid", "active")

    await reconciler.handle(SubscriptionDeleted(subscription_id="sub_1"))
    stored = await repo.get_user_by_id(user.id)
    assert (stored.subscription_tier, stored.subscription_status) == ("free", "canceled")
    assert stored.stripe_subscription_id is None
