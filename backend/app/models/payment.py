"""
Payment models for the Stripe integration.

Payments are booking-level money movements. A payment hold is a Payment whose
Stripe PaymentIntent was created with manual capture and has not been captured.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.ulid_helper import generate_ulid
from app.database import Base

if TYPE_CHECKING:
    from app.models.booking import Booking
    from app.models.user import User

# Stripe statuses that end an authorization without money moving
INACTIVE_HOLD_STATUSES = ("canceled", "failed")

# Recorded for a declined authorization attempt; no intent is held
FAILED_ATTEMPT_STATUS = "failed"


class Payment(Base):
    """A charge, hold, fee, or refund attached to one booking. Amount is signed."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    stripe_payment_method_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    is_captured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    @property
    def is_active_hold(self) -> bool:
        return (
            not self.is_captured
            and self.stripe_payment_intent_id is not None
            and self.status not in INACTIVE_HOLD_STATUSES
        )

    def __repr__(self) -> str:
        return (
            f"<Payment(booking_id={self.booking_id}, amount={self.amount}, "
            f"status={self.status}, captured={self.is_captured})>"
        )


class SavedPaymentMethod(Base):
    """Cards a client saved with the platform (mirrors Stripe PaymentMethods)."""

    __tablename__ = "saved_payment_methods"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stripe_payment_method_id: Mapped[str] = mapped_column(String(255), nullable=False)
    last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="saved_payment_methods")

    def __repr__(self) -> str:
        return f"<SavedPaymentMethod(user_id={self.user_id}, last4={self.last4}, default={self.is_default})>"
