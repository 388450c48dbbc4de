"""Database model for the platform configuration singleton."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric
from sqlalchemy.sql import func

from ..database import Base

CONFIGURATION_ID = 1


class Configuration(Base):
    """Single-row table with the business rules admins can edit at runtime."""

    __tablename__ = "configuration"

    id = Column(Integer, primary_key=True, default=CONFIGURATION_ID)
    # NULL means a hold is placed as soon as a card-paid booking is created
    payment_hold_delay_hours = Column(Integer, nullable=True)
    cancellation_window_hours = Column(Integer, nullable=False, default=24)
    cancellation_fee_amount = Column(Numeric(10, 2), nullable=False, default=50)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "payment_hold_delay_hours IS NULL OR payment_hold_delay_hours > 0",
            name="ck_configuration_hold_delay_positive",
        ),
        CheckConstraint("cancellation_window_hours >= 0", name="ck_configuration_window"),
        CheckConstraint("cancellation_fee_amount >= 0", name="ck_configuration_fee"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Configuration hold_delay={self.payment_hold_delay_hours}>"


__all__ = ["CONFIGURATION_ID", "Configuration"]
