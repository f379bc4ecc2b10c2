"""Shared test fixtures."""

from __future__ import annotations

import os
import tempfile
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursehub.config import get_settings

_KEY_DIR: str | None = None


def _ensure_test_keys() -> tuple[str, str]:
    """Generate an RSA key pair for JWTs once per test session."""
    global _KEY_DIR  # noqa: PLW0603
    if _KEY_DIR is None:
        _KEY_DIR = tempfile.mkdtemp(prefix="coursehub_test_keys_")
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        Path(_KEY_DIR, "jwt_private.pem").write_bytes(
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        Path(_KEY_DIR, "jwt_public.pem").write_bytes(
            key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )

    private_path = os.path.join(_KEY_DIR, "jwt_private.pem")
    public_path = os.path.join(_KEY_DIR, "jwt_public.pem")
    os.environ["COURSEHUB_JWT_PRIVATE_KEY_PATH"] = private_path
    os.environ["COURSEHUB_JWT_PUBLIC_KEY_PATH"] = public_path
    # The test client talks plain http, so the session cookie must not be Secure
    os.environ["COURSEHUB_SESSION_COOKIE_SECURE"] = "false"
    os.environ["COURSEHUB_LOG_FORMAT"] = "console"

    get_settings.cache_clear()
    from coursehub.auth.jwt import reset_keys
    reset_keys()

    return private_path, public_path


_ensure_test_keys()

from coursehub.auth.jwt import create_access_token  # noqa: E402
from coursehub.auth.service import register_account  # noqa: E402
from coursehub.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from coursehub.db import models  # noqa: E402, F401
from coursehub.db.base import Base  # noqa: E402
from coursehub.db.models import (  # noqa: E402
    ROLE_ADMIN,
    ROLE_STANDARD,
    Account,
    Course,
    CourseModule,
    Lesson,
    SubscriptionPlan,
)
from coursehub.payments.provider import (  # noqa: E402
    CaptureResult,
    PaymentProvider,
    ProviderOrder,
    ProviderSubscription,
    WebhookTransmission,
)

TEST_PASSWORD = "CorrectHorse9"


class FakePaymentProvider(PaymentProvider):
    """In-memory provider: records calls and returns canned responses."""

    def __init__(self) -> None:
        self.verify_result = True
        self.capture_status = "COMPLETED"
        self.orders: list[dict[str, Any]] = []
        self.captures: list[str] = []
        self.subscriptions: list[dict[str, Any]] = []
        self.cancelled: list[str] = []
        self.verified: list[tuple[WebhookTransmission, dict[str, Any]]] = []

    async def create_order(self, amount: Decimal, currency: str, custom_id: str, description: str) -> ProviderOrder:
        order_id = f"ORDER-{len(self.orders) + 1}"
        self.orders.append(
            {"order_id": order_id, "amount": amount, "currency": currency, "custom_id": custom_id}
        )
        return ProviderOrder(order_id, "CREATED", f"https://paypal.test/checkoutnow?token={order_id}")

    async def capture_order(self, order_id: str) -> CaptureResult:
        self.captures.append(order_id)
        return CaptureResult(order_id, self.capture_status, f"CAPTURE-{order_id}", None)

    async def create_subscription(
        self, plan_id: str, custom_id: str, subscriber_email: str | None = None
    ) -> ProviderSubscription:
        sub_id = f"I-SUB{len(self.subscriptions) + 1}"
        self.subscriptions.append({"subscription_id": sub_id, "plan_id": plan_id, "custom_id": custom_id})
        return ProviderSubscription(sub_id, "APPROVAL_PENDING", f"https://paypal.test/subscribe?ba={sub_id}")

    async def cancel_subscription(self, subscription_id: str, reason: str) -> None:
        self.cancelled.append(subscription_id)

    async def verify_webhook_signature(self, transmission: WebhookTransmission, event: dict[str, Any]) -> bool:
        self.verified.append((transmission, event))
        return self.verify_result


WEBHOOK_HEADERS = {
    "PAYPAL-TRANSMISSION-ID": "b2f1c9e0-0000-4000-8000-000000000001",
    "PAYPAL-TRANSMISSION-SIG": "dGVzdC1zaWduYXR1cmU=",
    "PAYPAL-TRANSMISSION-TIME": "2026-10-19T10:00:00Z",
    "PAYPAL-CERT-URL": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42",
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[None, None]:
    """Fresh SQLite database with the full schema."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'coursehub.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def session_factory(database: None) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App / client
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture(autouse=True)
def mock_email_service(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Mock the email service to prevent actual email sending."""
    mock_service = MagicMock()
    mock_service.send_template = AsyncMock(return_value=True)
    mock_service.send_email = AsyncMock(return_value=True)

    for target in (
        "coursehub.auth.router.get_email_service",
        "coursehub.payments.service.get_email_service",
        "coursehub.email.service.get_email_service",
    ):
        monkeypatch.setattr(target, lambda *a, **kw: mock_service)
    return mock_service


@pytest_asyncio.fixture
async def client(database: None, fake_provider: FakePaymentProvider) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh app; the lifespan is replaced by the fixtures above."""
    from coursehub.main import create_app

    app = create_app()
    app.state.payment_provider = fake_provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


async def create_account(
    db: AsyncSession,
    email: str | None = None,
    role: str = ROLE_STANDARD,
    name: str = "Test Learner",
) -> Account:
    account = await register_account(
        db,
        email=email or f"learner-{uuid.uuid4().hex[:8]}@example.com",
        password=TEST_PASSWORD,
        name=name,
        role=role,
    )
    await db.commit()
    return account


async def create_course(
    db: AsyncSession,
    lessons: int = 4,
    price: Decimal = Decimal("49.00"),
    preview_first: bool = False,
    external_product_id: str | None = None,
    title: str = "Intro to Python",
) -> tuple[Course, list[Lesson]]:
    """A published course with a single module of ``lessons`` lessons."""
    course = Course(title=title, price=price, currency="USD", external_product_id=external_product_id)
    db.add(course)
    await db.flush()
    module = CourseModule(course_id=course.id, title="Module 1", position=1)
    db.add(module)
    await db.flush()
    created = []
    for i in range(lessons):
        lesson = Lesson(
            module_id=module.id,
            title=f"Lesson {i + 1}",
            content=f"Content of lesson {i + 1}",
            position=i + 1,
            is_preview=preview_first and i == 0,
        )
        db.add(lesson)
        created.append(lesson)
    await db.commit()
    return course, created


async def create_plan(db: AsyncSession, provider_plan_id: str = "P-MONTHLY") -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name="All Access Monthly",
        price=Decimal("19.00"),
        duration_months=1,
        provider_plan_id=provider_plan_id,
        features=["All courses"],
    )
    db.add(plan)
    await db.commit()
    return plan


def auth_headers(account: Account) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(account.id)}"}


@pytest_asyncio.fixture
async def learner(db_session: AsyncSession) -> Account:
    return await create_account(db_session, email="learner@example.com")


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> Account:
    return await create_account(db_session, email="admin@example.com", role=ROLE_ADMIN, name="Admin")
