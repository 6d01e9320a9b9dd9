"""
Pytest configuration and fixtures for testing
"""
import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from auth_utils import create_jwt, hash_password
from config.settings import load_settings
from crud.user import UserRepository
from database import Database
from errors import ProviderError, UnverifiableEvent
from main import create_app
from models.subscription import SubscriptionUpdate
from services.billing_provider import CheckoutSession, ProviderSubscription

# In-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

VALID_SIGNATURE = "t=1,v1=valid"
PERIOD_END = datetime(2030, 1, 31, tzinfo=timezone.utc)


class FakeBillingProvider:
    """
    Stands in for StripeBillingProvider.

    Records every call, hands out predictable ids, and accepts webhook
    payloads only when signed with VALID_SIGNATURE. `fail_next` is raised
    by the next call, or only by the method named in `fail_method`.
    `delay` makes each Stripe call yield to the event loop first.
    """

    def __init__(self):
        self.customers = []
        self.checkout_sessions = []
        self.cancellations = []
        self.retrievals = []
        self.fail_next = None
        self.fail_method = None
        self.delay = 0

    async def _call(self, method):
        await asyncio.sleep(self.delay)
        if self.fail_next is not None and self.fail_method in (None, method):
            error, self.fail_next = self.fail_next, None
            raise error

    async def create_customer(self, user_id, email, name=None):
        await self._call("create_customer")
        customer_id = f"cus_{user_id}_{len(self.customers) + 1}"
        self.customers.append((user_id, customer_id))
        return customer_id

    async def create_checkout_session(self, user_id, customer_id):
        await self._call("create_checkout_session")
        session_id = f"cs_test_{len(self.checkout_sessions) + 1}"
        self.checkout_sessions.append((user_id, customer_id))
        return CheckoutSession(session_id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    async def cancel_at_period_end(self, subscription_id):
        await self._call("cancel_at_period_end")
        self.cancellations.append(subscription_id)
        return ProviderSubscription(subscription_id, "active", PERIOD_END, True)

    async def retrieve_subscription(self, subscription_id):
        await self._call("retrieve_subscription")
        self.retrievals.append(subscription_id)
        return ProviderSubscription(subscription_id, "active", PERIOD_END, bool(self.cancellations))

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise UnverifiableEvent("Invalid webhook signature")
        return json.loads(payload)


def stripe_event(event_type, obj, event_id="evt_test"):
    """Build an event body shaped like Stripe's."""
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        jwt_secret_key="test-secret-key",
        stripe_webhook_secret="whsec_test",
        stripe_price_id="price_test",
        database_url=TEST_DATABASE_URL,
        log_dir=str(tmp_path / "logs"),
        client_url="http://localhost:3000",
    )


@pytest.fixture
async def database():
    """
    Isolated in-memory database per test.

    Creates all tables before the test runs and drops them afterwards.
    """
    db = Database(TEST_DATABASE_URL)
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest.fixture
async def test_db(database):
    """A clean AsyncSession for service-level tests"""
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def app(settings, database, provider):
    return create_app(settings=settings, database=database, billing_provider=provider, setup_logging=False)


@pytest.fixture
async def client(app):
    """Async HTTP client talking to the app in-process"""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


async def create_test_user(database, email, role="user", password="password123", name=None, **subscription_fields):
    """Create and commit a user in its own session."""
    async with database.session_factory() as session:
        repo = UserRepository(session)
        user = await repo.create_user({
            "email": email,
            "name": name,
            "hashed_password": hash_password(password),
            "role": role,
        })
        if subscription_fields:
            await repo.apply_update(user, SubscriptionUpdate(**subscription_fields))
        await session.commit()
        return user


@pytest.fixture
def make_user(database):
    """Create and commit a user, optionally with subscription fields already set."""
    counter = {"n": 0}

    async def _make(email=None, **fields):
        counter["n"] += 1
        return await create_test_user(database, email or f"user{counter['n']}@example.com", **fields)

    return _make


@pytest.fixture
def load_user(database):
    """Read a user in a fresh session, so the result reflects committed state."""

    async def _load(user_id):
        async with database.session_factory() as session:
            return await UserRepository(session).get_user_by_id(user_id)

    return _load


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {create_jwt(str(user.id), settings)}"}

    return _headers


@pytest.fixture
def provider_error():
    return ProviderError("Stripe is unavailable")


@pytest.fixture
async def file_database(tmp_path):
    """
    File-backed database, so concurrent requests get separate connections
    and only see each other's committed writes.
    """
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def file_client(settings, file_database, provider):
    app = create_app(settings=settings, database=file_database, billing_provider=provider, setup_logging=False)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client
