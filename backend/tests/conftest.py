"""Pytest configuration and fixtures for PrepX billing tests."""

import os

# Settings are read at import time, so the test environment goes first
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test-key-secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["SENTRY_DSN"] = ""

import json
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.security import compute_signature, create_access_token
from app.crud import plan as plan_crud
from app.crud import user as user_crud
from app.main import app
from app.models.coupon import Coupon
from app.models.plan import Plan
from app.models.subscription import Subscription
from app.models.user import UserProfile

# Use SQLite in-memory database for tests (faster and no setup needed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WEBHOOK_SECRET = "test-webhook-secret"
KEY_SECRET = "test-key-secret"


@pytest.fixture
def now() -> datetime:
    """Fixed reference time (naive UTC) used by service-level tests."""
    return datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
async def engine():
    """Create async engine for tests with SQLite in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,  # StaticPool for in-memory SQLite
        connect_args={"check_same_thread": False},  # Required for SQLite
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after tests
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        # Rollback to clean up any changes (but allows commits during test)
        await session.rollback()


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database session override."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def plans(db_session: AsyncSession) -> dict[str, Plan]:
    """Seed the plan catalog, keyed by slug."""
    seeded = await plan_crud.seed_default_plans(db_session)
    return {plan.slug: plan for plan in seeded}


@pytest.fixture
async def student(db_session: AsyncSession) -> UserProfile:
    """A regular user."""
    return await user_crud.create_user(db_session, "student@example.com", "Test Student")


@pytest.fixture
async def other_student(db_session: AsyncSession) -> UserProfile:
    return await user_crud.create_user(db_session, "friend@example.com", "Friend Student")


@pytest.fixture
async def admin(db_session: AsyncSession) -> UserProfile:
    """A user with the admin role."""
    return await user_crud.create_user(db_session, "admin@example.com", "Admin User", role="admin")


def token_headers(user: UserProfile) -> dict[str, str]:
    access_token = create_access_token(
        data={"sub": str(user.id)},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def auth_headers(student: UserProfile) -> dict[str, str]:
    """Bearer token for the student."""
    return token_headers(student)


@pytest.fixture
def admin_headers(admin: UserProfile) -> dict[str, str]:
    """Bearer token for the admin."""
    return token_headers(admin)


@pytest.fixture
def make_subscription(
    db_session: AsyncSession,
) -> Callable[..., Awaitable[Subscription]]:
    """Factory inserting a subscription row with arbitrary fields."""

    async def _make(user: UserProfile, status: str, plan: Plan | None = None, **fields: Any) -> Subscription:
        subscription = Subscription(user_id=user.id, status=status, plan=plan, **fields)
        db_session.add(subscription)
        await db_session.commit()
        await db_session.refresh(subscription)
        return subscription

    return _make


@pytest.fixture
def make_coupon(db_session: AsyncSession) -> Callable[..., Awaitable[Coupon]]:
    """Factory inserting a coupon; codes are stored upper-cased."""

    async def _make(code: str, discount_type: str = "percent", discount_value: int = 10, **fields: Any) -> Coupon:
        coupon = Coupon(code=code.upper(), discount_type=discount_type, discount_value=discount_value, **fields)
        db_session.add(coupon)
        await db_session.commit()
        await db_session.refresh(coupon)
        return coupon

    return _make

@pytest.fixture
def fetch_rows(db_session: AsyncSession) -> Callable[..., Awaitable[list[Any]]]:
    """All rows of a model matching the given column values."""

    async def _fetch(model: type, **filters: Any) -> list[Any]:
        result = await db_session.execute(select(model).filter_by(**filters))
        return list(result.scalars().all())

    return _fetch


def sign_body(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(body, secret)


def webhook_body(event: str, **entities: dict[str, Any]) -> bytes:
    """Serialize a gateway webhook: ``{"event": ..., "payload": {name: {"entity": ...}}}``."""
    payload = {name: {"entity": entity} for name, entity in entities.items()}
    return json.dumps({"event": event, "payload": payload}).encode("utf-8")


def payment_signature(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(f"{order_id}|{payment_id}".encode("utf-8"), secret)


@pytest.fixture
def signer() -> Callable[[bytes], str]:
    """Signs a raw webhook body with the configured webhook secret."""
    return sign_body


@pytest.fixture
def build_webhook() -> Callable[..., bytes]:
    return webhook_body


@pytest.fixture
def sign_payment() -> Callable[[str, str], str]:
    """Checkout callback signature over ``order_id|payment_id``."""
    return payment_signature


@pytest.fixture
def headers_for() -> Callable[[UserProfile], dict[str, str]]:
    return token_headers
