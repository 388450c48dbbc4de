# backend/app/models/booking.py
"""
Booking model for the CleanOps backend.

A booking is one scheduled cleaning visit. Recurring work is represented as
several independent booking rows sharing a series key (client, service type,
address, frequency); there is no separate series table.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, NamedTuple, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ServiceFrequency(str, Enum):
    ONE_TIME = "ONE_TIME"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class PaymentMethodType(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    CASH = "CASH"


# Statuses that never take part in series reconciliation
CLOSED_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

# Statuses the hold sweep never selects
HOLD_EXCLUDED_STATUSES = (
    BookingStatus.CANCELLED,
    BookingStatus.COMPLETED,
    BookingStatus.IN_PROGRESS,
)


class SeriesKey(NamedTuple):
    client_id: str
    service_type: str
    address: str
    frequency: Optional[str]


class Booking(Base):
    """
    One scheduled visit.

    `scheduled_date` is a calendar date and `scheduled_time` a wall-clock
    "HH:MM" string, both interpreted in the business timezone.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)

    # Core relationships
    client_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    cleaner_id = Column(String(26), ForeignKey("users.id"), nullable=True)

    # Schedule
    service_type = Column(String(100), nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_time = Column(String(8), nullable=False)
    duration_hours = Column(Numeric(5, 2), nullable=True)
    address = Column(Text, nullable=False)
    service_frequency = Column(String(20), nullable=True)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    special_instructions = Column(Text, nullable=True)

    # Pricing snapshot
    final_price = Column(Numeric(10, 2), nullable=True)
    cleaner_payment_amount = Column(Numeric(10, 2), nullable=True)
    payment_method = Column(String(20), nullable=True)
    payment_details = Column(Text, nullable=True)

    # Home details copied onto every series instance
    house_square_footage = Column(Integer, nullable=True)
    basement_square_footage = Column(Integer, nullable=True)
    number_of_bedrooms = Column(Integer, nullable=True)
    number_of_bathrooms = Column(Integer, nullable=True)
    number_of_cleaners_requested = Column(Integer, nullable=True)
    selected_extras = Column(JSON, nullable=True)

    is_generated = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    cleaner = relationship("User", foreign_keys=[cleaner_id])
    payments = relationship(
        "Payment",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="Payment.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "service_frequency IS NULL OR "
            "service_frequency IN ('ONE_TIME', 'WEEKLY', 'BIWEEKLY', 'MONTHLY')",
            name="ck_bookings_service_frequency",
        ),
        CheckConstraint("final_price IS NULL OR final_price >= 0", name="check_price_non_negative"),
        Index(
            "ix_bookings_series_key",
            "client_id",
            "service_type",
            "service_frequency",
            "scheduled_date",
        ),
    )

    # Attributes a series instance inherits from the booking it was generated from
    SERIES_COPY_FIELDS = (
        "client_id",
        "cleaner_id",
        "service_type",
        "scheduled_time",
        "duration_hours",
        "address",
        "special_instructions",
        "final_price",
        "service_frequency",
        "house_square_footage",
        "basement_square_footage",
        "number_of_bedrooms",
        "number_of_bathrooms",
        "number_of_cleaners_requested",
        "cleaner_payment_amount",
        "payment_method",
        "selected_extras",
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.PENDING.value
        logger.info(
            f"Creating booking for client {self.client_id} on {self.scheduled_date} "
            f"({self.service_frequency or 'ONE_TIME'})"
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Booking {self.id}: client={self.client_id}, date={self.scheduled_date}, "
            f"time={self.scheduled_time}, frequency={self.service_frequency}, status={self.status}>"
        )

    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(
            client_id=self.client_id,
            service_type=self.service_type,
            address=self.address,
            frequency=self.service_frequency,
        )

    @property
    def is_recurring(self) -> bool:
        return self.service_frequency not in (None, ServiceFrequency.ONE_TIME.value)

    def append_note(self, note: str) -> None:
        if self.special_instructions:
            self.special_instructions = f"{self.special_instructions}\n\n{note}"
        else:
            self.special_instructions = note

    def cancel(self, reason: Optional[str] = None) -> None:
        """Cancel this booking, appending the reason to the notes."""
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = datetime.now(timezone.utc)
        if reason:
            self.append_note(f"Cancellation Reason: {reason}")
        logger.info(f"Booking {self.id} cancelled")

    def copy_series_attributes(self) -> dict[str, Any]:
        """Attributes a generated instance of this booking's series starts from."""
        attributes = {field: getattr(self, field) for field in self.SERIES_COPY_FIELDS}
        if attributes["selected_extras"] is not None:
            attributes["selected_extras"] = list(attributes["selected_extras"])
        return attributes
