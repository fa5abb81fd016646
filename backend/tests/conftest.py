"""Shared test fixtures: in-memory database, HTTP client, Lemon Squeezy payload builders."""

import json
import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Must be set before any app module reads get_settings()
_TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
WEBHOOK_SECRET = "whsec_test_secret"
AUTH_SECRET = "auth_test_secret"
STORE_ID = "1234"
STORE_URL = "https://skillielts.lemonsqueezy.com"

os.environ["DATABASE_URL"] = _TEST_DB_URL
os.environ["AUTH_SECRET"] = AUTH_SECRET
os.environ["LEMON_SQUEEZY_API_KEY"] = "ls_test_key"
os.environ["LEMON_SQUEEZY_STORE_ID"] = STORE_ID
os.environ["LEMON_SQUEEZY_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["LEMON_SQUEEZY_STORE_URL"] = STORE_URL
os.environ["AXIOM_TOKEN"] = ""
os.environ["CLOUDWATCH_METRICS_ENABLED"] = "false"

CUSTOMER_ID = 555
SUBSCRIPTION_ID = "1001"


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def build_subscription_event(
    event_name: str = "subscription_created",
    *,
    user_id: str | None = None,
    subscription_id: str = SUBSCRIPTION_ID,
    customer_id: int = CUSTOMER_ID,
    status: str = "active",
    product_id: int | None = 10,
    variant_id: int | None = 20,
    price_id: int = 3001,
    updated_at: str = "2026-10-01T12:00:00.000000Z",
    first_item: bool = True,
) -> dict:
    """Build a subscription webhook body the way Lemon Squeezy sends it."""
    attributes = {
        "store_id": int(STORE_ID),
        "customer_id": customer_id,
        "order_id": 9001,
        "order_item_id": 9101,
        "product_id": product_id,
        "variant_id": variant_id,
        "product_name": "IELTS Premium",
        "variant_name": "Monthly",
        "user_name": "Ada Learner",
        "user_email": "ada@example.com",
        "status": status,
        "status_formatted": status.replace("_", " ").title(),
        "card_brand": "visa",
        "card_last_four": "4242",
        "pause": None,
        "cancelled": status == "cancelled",
        "trial_ends_at": None,
        "billing_anchor": 1,
        "urls": {
            "update_payment_method": f"{STORE_URL}/subscription/{subscription_id}/payment-details",
            "customer_portal": f"{STORE_URL}/billing?expires=1&signature=abc",
        },
        "renews_at": "2026-11-01T12:00:00.000000Z",
        "ends_at": None,
        "created_at": "2026-10-01T12:00:00.000000Z",
        "updated_at": updated_at,
        "test_mode": True,
    }
    if first_item:
        attributes["first_subscription_item"] = {
            "id": 4242,
            "subscription_id": int(subscription_id),
            "price_id": price_id,
            "quantity": 1,
            "is_usage_based": False,
            "created_at": "2026-10-01T12:00:00.000000Z",
            "updated_at": updated_at,
        }

    meta: dict = {"event_name": event_name, "test_mode": True, "webhook_id": "wh_0001"}
    if user_id is not None:
        meta["custom_data"] = {"user_id": user_id}

    return {
        "meta": meta,
        "data": {
            "type": "subscriptions",
            "id": subscription_id,
            "attributes": attributes,
            "relationships": {},
            "links": {"self": f"https://api.lemonsqueezy.com/v1/subscriptions/{subscription_id}"},
        },
    }


def build_order_event(
    event_name: str = "order_created",
    *,
    user_id: str | None = None,
    customer_id: int = CUSTOMER_ID,
    status: str = "paid",
) -> dict:
    meta: dict = {"event_name": event_name, "test_mode": True}
    if user_id is not None:
        meta["custom_data"] = {"user_id": user_id}
    return {
        "meta": meta,
        "data": {
            "type": "orders",
            "id": "5001",
            "attributes": {
                "store_id": int(STORE_ID),
                "customer_id": customer_id,
                "identifier": "104e18a2-d755-4d4b-80c4-a6c1dcbe1c10",
                "order_number": 1,
                "user_name": "Ada Learner",
                "user_email": "ada@example.com",
                "currency": "USD",
                "status": status,
                "status_formatted": status.title(),
                "total": 1999,
                "created_at": "2026-10-01T12:00:00.000000Z",
                "updated_at": "2026-10-01T12:00:00.000000Z",
            },
        },
    }


def build_invoice_event(
    event_name: str = "subscription_payment_success",
    *,
    user_id: str | None = None,
    subscription_id: int = int(SUBSCRIPTION_ID),
    customer_id: int = CUSTOMER_ID,
    status: str = "paid",
) -> dict:
    """Build a subscription-invoice webhook body, as sent for payment events."""
    meta: dict = {"event_name": event_name, "test_mode": True}
    if user_id is not None:
        meta["custom_data"] = {"user_id": user_id}
    return {
        "meta": meta,
        "data": {
            "type": "subscription-invoices",
            "id": "7001",
            "attributes": {
                "store_id": int(STORE_ID),
                "subscription_id": subscription_id,
                "customer_id": customer_id,
                "user_name": "Ada Learner",
                "user_email": "ada@example.com",
                "billing_reason": "renewal",
                "card_brand": "visa",
                "card_last_four": "4242",
                "currency": "USD",
                "status": status,
                "status_formatted": status.title(),
                "refunded": False,
                "subtotal": 1999,
                "total": 1999,
                "urls": {"invoice_url": f"{STORE_URL}/my-orders/invoice/7001"},
                "created_at": "2026-11-01T12:00:00.000000Z",
                "updated_at": "2026-11-01T12:00:05.000000Z",
                "test_mode": True,
            },
            "relationships": {},
            "links": {"self": "https://api.lemonsqueezy.com/v1/subscription-invoices/7001"},
        },
    }


@pytest.fixture
def subscription_event():
    return build_subscription_event


@pytest.fixture
def order_event():
    return build_order_event


@pytest.fixture
def invoice_event():
    return build_invoice_event


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    """In-memory database wired into the app's global session factory."""
    import app.db.base as db_mod
    import app.db.models  # noqa: F401

    engine = create_async_engine(_TEST_DB_URL, **db_mod._engine_options(_TEST_DB_URL, echo=False))
    async with engine.begin() as conn:
        await conn.run_sync(db_mod.Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    from app.db.base import get_session_factory

    return get_session_factory()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session_factory):
    """Factory fixture: persist a user and return it."""
    from app.db.models.user import User

    async def _make(
        user_id: str | None = None,
        email: str = "ada@example.com",
        role: str = "USER",
        customer_id: str | None = None,
    ) -> User:
        async with session_factory() as session:
            user = User(email=email, name="Ada Learner", role=role, lemon_squeezy_customer_id=customer_id)
            if user_id is not None:
                user.id = user_id
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


@pytest.fixture
def fetch_all(session_factory):
    """Return every row of a model, ordered by primary key."""
    from sqlalchemy import select

    async def _fetch(model):
        async with session_factory() as session:
            result = await session.execute(select(model).order_by(model.id))
            return list(result.scalars().all())

    return _fetch


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(engine):
    """AsyncClient bound to the real app; the database comes from ``engine``."""
    from app.main import app

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def post_webhook(client):
    """Sign and POST a webhook body. ``signature`` overrides the computed one."""
    from app.domain.webhook_signature import compute_signature

    async def _post(payload: dict | bytes, signature: str | None = None):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        headers = {"Content-Type": "application/json"}
        headers["X-Signature"] = signature if signature is not None else compute_signature(raw, WEBHOOK_SECRET)
        return await client.post("/api/webhooks/lemon-squeezy", content=raw, headers=headers)

    return _post


def make_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode({"sub": user_id, "iat": now, "exp": now + expires_in}, AUTH_SECRET, algorithm="HS256")


@pytest.fixture
def make_jwt():
    return make_token


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers
