# backend/tests/conftest.py
"""
Pytest configuration for the BookingFlow test-suite.

Every test gets a fresh in-memory SQLite database. Provider SDKs are never
reached: the Cal.com client is a Mock with the real client's spec and Stripe
SDK calls are patched per test. Webhook payloads are signed for real so the
signature check runs exactly as in production.
"""

import os

os.environ.setdefault("CI", "true")

from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bookingflow.core.config import Settings
from bookingflow.core.provider_registry import ProviderIdentifierRegistry
from bookingflow.database import Base, init_db
from bookingflow.integrations.calcom_client import CalComClient
from bookingflow.models.practitioner import Practitioner
from bookingflow.services.booking_service import BookingService
from bookingflow.services.scheduling_service import SchedulingService
from bookingflow.services.stripe_service import StripeService

from tests._utils.booking_data import (
    HOURLY_RATE,
    PRACTITIONER_ID,
    SECOND_PRACTITIONER_ID,
    WEBHOOK_SECRET,
    future_slot,
)

# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def db_engine() -> Iterator[Any]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(db_engine: Any) -> Iterator[Session]:
    session_factory = sessionmaker(
        bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def practitioner(db: Session) -> Practitioner:
    practitioner = Practitioner(
        id=PRACTITIONER_ID,
        name="Dr Ada Example",
        email="ada@example.com",
        description="Sports physiotherapist",
        hourly_rate=HOURLY_RATE,
    )
    db.add(practitioner)
    db.commit()
    return practitioner


@pytest.fixture
def second_practitioner(db: Session) -> Practitioner:
    practitioner = Practitioner(
        id=SECOND_PRACTITIONER_ID,
        name="Ben Sample",
        email="ben@example.com",
        description=None,
        hourly_rate=6500,
    )
    db.add(practitioner)
    db.commit()
    return practitioner


# ============================================================================
# Settings and collaborators
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite://",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        public_base_url="https://app.example.com",
        calcom_api_key="cal_test_key",
        calcom_user_id="4242",
        calcom_event_types={PRACTITIONER_ID: "1001", SECOND_PRACTITIONER_ID: "1002"},
        calendar_retry_max_attempts=3,
    )


@pytest.fixture
def registry(test_settings: Settings) -> ProviderIdentifierRegistry:
    return ProviderIdentifierRegistry.from_settings(test_settings)


@pytest.fixture
def calcom_client() -> Mock:
    client = Mock(spec=CalComClient)
    client.get_busy_intervals.return_value = []
    client.create_booking.return_value = {"id": 555, "uid": "cal-uid-555"}
    client.cancel_booking.return_value = {}
    return client


@pytest.fixture
def scheduling(
    test_settings: Settings, registry: ProviderIdentifierRegistry, calcom_client: Mock
) -> SchedulingService:
    return SchedulingService(test_settings, registry, client=calcom_client)


@pytest.fixture
def payments(test_settings: Settings) -> StripeService:
    return StripeService(test_settings)


@pytest.fixture
def checkout_create() -> Iterator[Mock]:
    """Patch the Stripe SDK so each checkout gets a unique session id."""
    counter = {"n": 0}

    def _create(**kwargs: Any) -> Dict[str, Any]:
        counter["n"] += 1
        session_id = f"cs_test_{counter['n']}"
        return {"id": session_id, "url": f"https://checkout.stripe.com/c/pay/{session_id}"}

    with patch("stripe.checkout.Session.create", side_effect=_create) as mocked:
        yield mocked


@pytest.fixture
def booking_service(
    db: Session,
    scheduling: SchedulingService,
    payments: StripeService,
    test_settings: Settings,
) -> BookingService:
    return BookingService(db, scheduling, payments, test_settings)


@pytest.fixture
def make_booking(
    booking_service: BookingService, practitioner: Practitioner, checkout_create: Mock
) -> Callable[..., Any]:
    """Create a pending booking through the service and return its checkout."""

    def _make(start_time: Optional[datetime] = None, **overrides: Any) -> Any:
        fields: Dict[str, Any] = {
            "practitioner_id": practitioner.id,
            "client_name": "Casey Client",
            "client_email": "casey@example.com",
            "client_phone": "+44 7700 900123",
            "start_time": start_time or future_slot(),
        }
        fields.update(overrides)
        return booking_service.create_booking(**fields)

    return _make
