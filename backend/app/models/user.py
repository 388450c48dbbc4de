# backend/app/models/user.py
"""
User model for the CleanOps backend.

Clients own bookings and carry the Stripe customer identity that payment
holds are authorized against. Cleaners are referenced as booking assignees.
"""

from enum import Enum
import logging

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    CLEANER = "CLEANER"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.CLIENT)

    # Stripe customer identity (nullable until the client saves a card)
    stripe_customer_id = Column(String(255), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    saved_payment_methods = relationship(
        "SavedPaymentMethod", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.email} ({self.role})>"
