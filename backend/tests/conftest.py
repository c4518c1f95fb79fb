import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bikawo.domain.bookings.db_models import Booking
from bikawo.domain.payments.db_models import Payment
from bikawo.domain.refunds.policy import DEFAULT_REFUND_POLICY
from bikawo.infra.db import Base, get_db_session
from bikawo.infra.stripe_resilience import stripe_circuit
from bikawo.main import app
from bikawo.settings import settings

PARIS = ZoneInfo("Europe/Paris")


class FakeStripeClient:
    """Records refund requests; optionally fails or times out."""

    def __init__(self, *, error: Exception | None = None, refund_status: str = "succeeded") -> None:
        self.error = error
        self.refund_status = refund_status
        self.refund_calls: list[dict] = []

    async def create_refund(self, **kwargs):
        self.refund_calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(id=f"re_test_{len(self.refund_calls)}", status=self.refund_status)


class RecordingEmailAdapter:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_email(self, recipient, subject, body, *, headers=None) -> bool:
        self.sent.append({"recipient": recipient, "subject": subject, "body": body})
        return True


def service_slot(hours_ahead: float, *, now: datetime | None = None) -> tuple:
    """Paris wall-clock date and time ``hours_ahead`` hours after ``now``."""
    current = now or datetime.now(timezone.utc)
    local = (current + timedelta(hours=hours_ahead)).astimezone(PARIS)
    return local.date(), local.time().replace(tzinfo=None)


async def create_booking(
    session_maker,
    *,
    hours_ahead: float = 48,
    now: datetime | None = None,
    price_cents: int = 10000,
    status: str = "confirmed",
    provider_id: str | None = "provider-1",
    payment_intent_id: str | None = "pi_test_123",
    with_payment: bool = True,
) -> str:
    booking_date, start_time = service_slot(hours_ahead, now=now)
    async with session_maker() as session:
        booking = Booking(
            client_id="client-1",
            provider_id=provider_id,
            client_email="client@example.com",
            provider_email="provider@example.com" if provider_id else None,
            service_type="menage",
            booking_date=booking_date,
            start_time=start_time,
            duration_hours=2.0,
            total_price_cents=price_cents,
            status=status,
        )
        session.add(booking)
        await session.flush()
        if with_payment:
            session.add(
                Payment(
                    booking_id=booking.booking_id,
                    payment_intent_id=payment_intent_id,
                    amount_cents=price_cents,
                    currency="eur",
                )
            )
        await session.commit()
        return booking.booking_id


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original_username = settings.admin_basic_username
    original_password = settings.admin_basic_password
    original_admin_email = settings.admin_notification_email
    original_metrics_token = settings.metrics_token
    original_timeout = settings.stripe_refund_timeout_seconds
    original_stripe_key = settings.stripe_secret_key
    yield
    settings.admin_basic_username = original_username
    settings.admin_basic_password = original_password
    settings.admin_notification_email = original_admin_email
    settings.metrics_token = original_metrics_token
    settings.stripe_refund_timeout_seconds = original_timeout
    settings.stripe_secret_key = original_stripe_key


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    stripe_circuit.reset()
    yield


@pytest.fixture()
def fake_stripe():
    return FakeStripeClient()


@pytest.fixture()
def email_adapter():
    return RecordingEmailAdapter()


@pytest.fixture()
def admin_credentials():
    settings.admin_basic_username = "admin"
    settings.admin_basic_password = "secret"
    return ("admin", "secret")


@pytest.fixture()
def client(async_session_maker, fake_stripe, email_adapter):
    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    app.state.stripe_client = fake_stripe
    app.state.email_adapter = email_adapter
    app.state.refund_policy = DEFAULT_REFUND_POLICY
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
    app.state.stripe_client = None
    app.state.email_adapter = None
