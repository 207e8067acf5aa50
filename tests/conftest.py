import hashlib
import hmac
import os
import time
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Test configuration, set before the app reads its settings
os.environ.setdefault("MONGODB_DB_NAME", "contactvault_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("CREDIT_UNIT_PRICE", "200")
os.environ["RETRY_BASE_DELAY_SECONDS"] = "0"
os.environ["RETRY_MAX_DELAY_SECONDS"] = "0"

from app.core.exceptions import NotFoundError  # noqa: E402
from app.services.gateway import IntentInfo  # noqa: E402


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self.intents: dict[str, IntentInfo] = {}
        self.created: list[dict] = []

    async def create_intent(self, amount, currency, metadata, idempotency_key=None) -> IntentInfo:
        n = len(self.intents) + 1
        intent = IntentInfo(
            id=f"pi_test_{n}",
            client_secret=f"pi_test_{n}_secret_abc",
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent.id] = intent
        self.created.append({"amount": amount, "currency": currency, "metadata": dict(metadata)})
        return intent

    async def retrieve_intent(self, intent_id: str) -> IntentInfo:
        if intent_id not in self.intents:
            raise NotFoundError("Payment intent not found")
        return self.intents[intent_id]

    def set_status(self, intent_id: str, status: str, **updates) -> None:
        self.intents[intent_id] = self.intents[intent_id].model_copy(update={"status": status, **updates})


def sign_webhook(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs webhook deliveries."""
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def auth_headers(user) -> dict[str, str]:
    from app.core.security import create_session_cookie
    from app.deps import SESSION_COOKIE_NAME
    from app.services.users import session_payload_for_user
    cookie = create_session_cookie(session_payload_for_user(user))
    return {"Cookie": f"{SESSION_COOKIE_NAME}={cookie}"}


@pytest_asyncio.fixture(autouse=True)
async def db():
    from app.core.config import get_settings
    from app.core.retry import AlwaysOnline
    from app.db.init import init_db
    client = AsyncMongoMockClient()
    await init_db(get_settings(), client=client, probe=AlwaysOnline())
    yield client


@pytest_asyncio.fixture
async def user(db):
    from app.models.user import User
    u = User(google_sub="sub-alice", email="alice@example.com", name="Alice")
    await u.insert()
    return u


@pytest_asyncio.fixture
async def other_user(db):
    from app.models.user import User
    u = User(google_sub="sub-bob", email="bob@example.com", name="Bob")
    await u.insert()
    return u


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(gateway) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    from app.services.gateway import get_payment_gateway
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
