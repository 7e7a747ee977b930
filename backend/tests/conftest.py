# backend/tests/conftest.py
"""
Pytest configuration.

Settings are pinned through environment variables BEFORE any studiobook
import so the module-level ``settings`` never reads a developer's .env
values for the database, locks or Stripe.
"""

import os

os.environ["CI"] = "1"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STUDIO_TIMEZONE"] = "UTC"
os.environ["STUDIO_OPEN_HOUR"] = "9"
os.environ["STUDIO_CLOSE_HOUR"] = "21"

from datetime import datetime
from decimal import Decimal
from typing import Iterator

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.orm import Session, sessionmaker

from studiobook.api.dependencies.database import get_db
from studiobook.api.dependencies.services import get_event_channel, get_payment_gateway
from studiobook.core.enums import ServiceType
from studiobook.database import build_engine, init_db
from studiobook.events import BookingEventChannel
from studiobook.main import app
from studiobook.models.booking import Booking
from studiobook.models.service import PricingRule, Service
from studiobook.models.user import User
from studiobook.services.booking_service import BookingService
from studiobook.services.payment_service import PaymentService
from tests._utils.studio_helpers import NOW, UTC_STUDIO_HOURS, FakeGateway


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite:///:memory:")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def channel() -> BookingEventChannel:
    return BookingEventChannel()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def _add(db: Session, obj):
    db.add(obj)
    db.commit()
    return obj


@pytest.fixture
def client_user(db) -> User:
    return _add(db, User(email="artist@example.com", display_name="Artist One"))


@pytest.fixture
def other_user(db) -> User:
    return _add(db, User(email="other@example.com", display_name="Other Artist"))


@pytest.fixture
def admin_user(db) -> User:
    return _add(db, User(email="admin@example.com", display_name="Studio Admin", is_admin=True))


@pytest.fixture
def hourly_service(db) -> Service:
    return _add(
        db,
        Service(
            name="Hourly Studio Session",
            service_type=ServiceType.HOURLY_SESSION.value,
            hourly_pricing=[
                {"hours": 1, "price": "50"},
                {"hours": 2, "price": "100"},
                {"hours": 3, "price": "125"},
            ],
            min_duration_minutes=60,
        ),
    )


@pytest.fixture
def consultation_service(db) -> Service:
    return _add(
        db,
        Service(
            name="Free Consultation",
            service_type=ServiceType.CONSULTATION.value,
            duration_minutes=15,
            is_free=True,
            price=Decimal("0"),
            min_duration_minutes=15,
        ),
    )


@pytest.fixture
def per_song_service(db) -> Service:
    return _add(
        db,
        Service(
            name="Mix & Master",
            service_type=ServiceType.PER_SONG.value,
            price_per_song=Decimal("40"),
            min_duration_minutes=60,
        ),
    )


@pytest.fixture
def production_service(db) -> Service:
    return _add(
        db,
        Service(
            name="Beat Production",
            service_type=ServiceType.PRODUCTION.value,
            price_per_hour=Decimal("75"),
            allows_beat_license=True,
            min_duration_minutes=60,
        ),
    )


@pytest.fixture
def beat_license_rules(db) -> None:
    db.add_all(
        [
            PricingRule(key="basic-lease", label="Basic Lease", price=Decimal("35")),
            PricingRule(key="exclusive", label="Exclusive", price=Decimal("300")),
        ]
    )
    db.commit()


@pytest.fixture
def booking_service(db, channel) -> BookingService:
    return BookingService(db, channel=channel, studio_hours=UTC_STUDIO_HOURS, clock=lambda: NOW)


@pytest.fixture
def payment_service(db, gateway, booking_service) -> PaymentService:
    return PaymentService(db, gateway, booking_service=booking_service, clock=lambda: NOW)


@pytest.fixture
def make_booking(db):
    """Insert a booking row directly, bypassing creation checks."""

    def _make(user: User, service: Service, start: datetime, end: datetime, **fields) -> Booking:
        values = dict(
            user_id=user.id,
            service_id=service.id,
            service_type=service.service_type,
            service_name=service.name,
            start_at=start,
            end_at=end,
            duration_minutes=int((end - start).total_seconds() // 60),
            total_price=Decimal("100.00"),
            status="pending",
        )
        values.update(fields)
        return _add(db, Booking(**values))

    return _make


# HTTP layer


@pytest.fixture
def client(db, gateway, channel) -> Iterator[TestClient]:
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_event_channel] = lambda: channel
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()

