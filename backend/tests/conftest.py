# backend/tests/conftest.py
"""
Pytest configuration for the CleanOps backend.

Every test gets a fresh in-memory SQLite database built from the model
metadata. Stripe is never called: services receive a MagicMock StripeService.
"""

import os

# Set testing mode BEFORE any app imports
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("BUSINESS_TIMEZONE", "America/New_York")

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: E402,F401  registers every table
from app.database import Base  # noqa: E402
from app.models.booking import Booking, BookingStatus, PaymentMethodType  # noqa: E402
from app.models.configuration import CONFIGURATION_ID, Configuration  # noqa: E402
from app.models.payment import Payment, SavedPaymentMethod  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.config_service import ConfigService  # noqa: E402
from app.services.payment_hold_service import PaymentHoldService  # noqa: E402
from app.services.stripe_service import StripeService  # noqa: E402

SERVICE_TYPE = "Standard Cleaning"
ADDRESS = "12 Oak Street, Springfield"


@pytest.fixture
def test_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(test_engine: Engine) -> Iterator[Session]:
    """Create a fresh database session for each test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client_user(db: Session) -> User:
    user = User(
        email="client@example.com",
        first_name="Casey",
        last_name="Client",
        role=UserRole.CLIENT.value,
        stripe_customer_id="cus_test123",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def saved_card(db: Session, client_user: User) -> SavedPaymentMethod:
    card = SavedPaymentMethod(
        user_id=client_user.id,
        stripe_payment_method_id="pm_saved_visa",
        last4="4242",
        brand="visa",
        is_default=True,
    )
    db.add(card)
    db.commit()
    return card


def make_payment_intent(intent_id: str = "pi_hold_1", status: str = "requires_capture") -> MagicMock:
    payment_intent = MagicMock()
    payment_intent.id = intent_id
    payment_intent.status = status
    return payment_intent


@pytest.fixture
def mock_stripe_service() -> MagicMock:
    """StripeService double returning a successful manual authorization."""
    service = MagicMock(spec=StripeService)
    service.create_manual_authorization.return_value = make_payment_intent()
    service.cancel_payment_intent.return_value = make_payment_intent(status="canceled")
    service.capture_payment_intent.return_value = make_payment_intent(status="succeeded")
    service.list_customer_payment_methods.return_value = []
    return service


@pytest.fixture
def hold_service(db: Session, mock_stripe_service: MagicMock) -> PaymentHoldService:
    return PaymentHoldService(db, stripe_service=mock_stripe_service)


@pytest.fixture
def set_hold_delay(db: Session) -> Callable[[Optional[int]], Configuration]:
    def _set(hours: Optional[int]) -> Configuration:
        return ConfigService(db).update_configuration({"payment_hold_delay_hours": hours}).configuration

    return _set


@pytest.fixture
def make_booking(db: Session, client_user: User) -> Callable[..., Booking]:
    """Persist a booking directly, bypassing BookingService validation."""

    def _make(
        scheduled_date: date,
        *,
        scheduled_time: str = "10:00",
        service_frequency: Optional[str] = "ONE_TIME",
        status: str = BookingStatus.CONFIRMED.value,
        final_price: Optional[Decimal] = Decimal("120.00"),
        payment_method: Optional[str] = PaymentMethodType.CREDIT_CARD.value,
        **overrides: Any,
    ) -> Booking:
        attributes = dict(
            client_id=client_user.id,
            service_type=SERVICE_TYPE,
            address=ADDRESS,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            service_frequency=service_frequency,
            status=status,
            final_price=final_price,
            payment_method=payment_method,
        )
        attributes.update(overrides)
        booking = Booking(**attributes)
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def make_hold(db: Session) -> Callable[..., Payment]:
    def _make(
        booking: Booking,
        *,
        intent_id: str = "pi_existing",
        status: str = "requires_capture",
        amount: Optional[Decimal] = None,
        payment_method_id: str = "pm_saved_visa",
    ) -> Payment:
        payment = Payment(
            booking_id=booking.id,
            amount=amount if amount is not None else booking.final_price,
            status=status,
            stripe_payment_intent_id=intent_id,
            stripe_payment_method_id=payment_method_id,
            is_captured=False,
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


@pytest.fixture
def configuration(db: Session) -> Configuration:
    record = db.get(Configuration, CONFIGURATION_ID)
    if record is None:
        record = ConfigService(db).get_configuration()
        db.commit()
    return record


@pytest.fixture
def api_client(db: Session, mock_stripe_service: MagicMock) -> Iterator[TestClient]:
    """TestClient bound to the test session with Stripe mocked."""
    from app.api.dependencies.database import get_db
    from app.api.dependencies.services import get_stripe_service
    from app.main import app

    def _get_db() -> Iterator[Session]:
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_stripe_service] = lambda: mock_stripe_service
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
