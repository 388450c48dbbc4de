"""
Database models for the CleanOps backend.

Importing this package registers every table on `Base.metadata`.
"""

from .booking import (
    Booking,
    BookingStatus,
    PaymentMethodType,
    SeriesKey,
    ServiceFrequency,
)
from .configuration import Configuration
from .payment import Payment, SavedPaymentMethod
from .user import User, UserRole

__all__ = [
    "Booking",
    "BookingStatus",
    "Configuration",
    "Payment",
    "PaymentMethodType",
    "SavedPaymentMethod",
    "SeriesKey",
    "ServiceFrequency",
    "User",
    "UserRole",
]
