"""Shared fixtures: in-memory database, fake processor, and an orchestrator factory."""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("SQUARE_ACCESS_TOKEN", "test-token")
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from teampay.common.config import CommonSettings
from teampay.common.db import Base
from teampay.common.errors import ProcessorError
from teampay.common.rate_limit import RateLimiter
from teampay.services.ledger.service import IdempotencyLedger
from teampay.services.notification.models import NotificationLog  # noqa: F401
from teampay.services.orchestrator.models import PaymentCollection
from teampay.services.orchestrator.service import PaymentOrchestrator
from teampay.services.provider_adapter.client import ProcessorCharge


class FrozenClock:
    """Manually advanced clock, pinned to the start of a minute."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeSquare:
    """Stands in for `SquareClient`; replays scripted failures, then succeeds."""

    environment = "sandbox"

    def __init__(self, outcomes=None) -> None:
        self.outcomes = list(outcomes or [])
        self.calls: list[dict] = []

    async def create_payment(self, **kwargs) -> ProcessorCharge:
        self.calls.append(kwargs)
        await asyncio.sleep(0)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
        key = kwargs["idempotency_key"]
        return ProcessorCharge(
            id=f"sq_{key[-12:]}",
            status="COMPLETED",
            receipt_url=f"https://squareup.com/receipt/preview/{key[-12:]}",
        )


class RecordingNotifier:
    def __init__(self) -> None:
        self.dispatched: list[tuple] = []

    def dispatch(self, payment, collection, receipt_url=None):
        self.dispatched.append((payment, collection, receipt_url))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def test_settings() -> CommonSettings:
    return CommonSettings(
        postgres_dsn="sqlite://",
        square_access_token="test-token",
        square_location_id="LOC123",
        payment_ip_limit=100,
        payment_email_limit=100,
        payment_fingerprint_limit=100,
        resend_api_key="re_test",
        admin_email="admin@example.com",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(session_factory, clock) -> IdempotencyLedger:
    return IdempotencyLedger(session_factory, stale_after_seconds=30, bucket_seconds=60, clock=clock)


@pytest.fixture
def collection(session_factory) -> PaymentCollection:
    with session_factory() as db:
        row = PaymentCollection(
            title="Spring Fees",
            slug="spring-fees",
            target_amount=Decimal("1000.00"),
            current_amount=Decimal("0"),
            is_active=True,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_orchestrator(session_factory, ledger, test_settings, sleeps):
    """Build an orchestrator around a fake processor and recording notifier."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    def factory(processor=None, settings=None, notifier=None, limiter=None):
        return PaymentOrchestrator(
            session_factory,
            ledger,
            processor or FakeSquare(),
            {"payment": limiter or RateLimiter()},
            notifier if notifier is not None else RecordingNotifier(),
            settings or test_settings,
            sleep=fake_sleep,
        )

    return factory


def declined(code: str = "CARD_DECLINED", status_code: int = 402) -> ProcessorError:
    return ProcessorError(status_code=status_code, error_code=code, category="PAYMENT_METHOD_ERROR")
