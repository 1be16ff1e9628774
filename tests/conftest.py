"""Test fixtures — SQLite test database, fake gateways, fake webhook receivers."""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Force SQLite test database *before* any payhub import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_payhub.db"
os.environ["GATEWAY_HEALTH_SWEEP_ENABLED"] = "false"

from payhub.config import Settings  # noqa: E402
from payhub.database import Base, async_session, engine  # noqa: E402
from payhub.main import app  # noqa: E402
from payhub.services.gateway_registry import PaymentGatewayService  # noqa: E402
from payhub.services.retry_policy import BackoffPolicy, fixed_backoff  # noqa: E402
from payhub.services.webhook_dispatcher import DeliveryDispatcher  # noqa: E402
from payhub.services.webhook_store import WebhookStore  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeGatewayService(PaymentGatewayService):
    """Gateway double; ``healthy`` may be a bool or an exception to raise."""

    def __init__(self, name="fake", healthy=True, countries=("KE",), currencies=("KES",)):
        self.name = name
        self.healthy = healthy
        self.countries = set(countries)
        self.currencies = set(currencies)
        self.health_calls = 0

    def get_name(self):
        return self.name

    def supports_country_and_currency(self, country, currency):
        return country in self.countries and currency in self.currencies

    def get_supported_payment_methods(self):
        return {"mobile_money"}

    async def process_payment(self, charge, payment_data):
        return {"status": "succeeded"}

    async def check_payment_status(self, charge):
        return {"status": "succeeded"}

    async def process_refund(self, charge, amount, metadata=None):
        return {"status": "refunded", "amount": amount}

    def validate_payment_method(self, details):
        return True

    async def health_check(self):
        self.health_calls += 1
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy


class NoHealthCheckService(FakeGatewayService):
    health_check = None


class Receiver:
    """Records webhook POSTs; answers with ``status`` or raises ``error``."""

    def __init__(self, status=200, body="ok", error=None):
        self.status = status
        self.body = body
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, text=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest_asyncio.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def settings() -> Settings:
    return Settings(webhook_max_attempts=3, webhook_backoff="fixed", webhook_backoff_base_seconds=60)


@pytest.fixture
def policy() -> BackoffPolicy:
    return BackoffPolicy(max_attempts=3, backoff=fixed_backoff(timedelta(seconds=60)))


@pytest.fixture
def store() -> WebhookStore:
    return WebhookStore(async_session)


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest_asyncio.fixture
async def dispatcher(store, policy, settings, receiver):
    http = receiver.client()
    yield DeliveryDispatcher(store, policy, http, settings)
    await http.aclose()


@pytest_asyncio.fixture
async def endpoint(store):
    return await store.create_endpoint(
        app_id="app_1",
        url="https://merchant.example.com/hooks",
        secret="whsec_test",
        events=["*"],
    )
