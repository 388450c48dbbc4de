# backend/app/schemas/__init__.py
"""
Pydantic schemas for the CleanOps admin API.

Request models forbid unknown fields; response models read straight from ORM
objects and serialize money as numbers.
"""

from .booking import (
    BookingCancel,
    BookingCreate,
    BookingMutationResponse,
    BookingResponse,
    BookingUpdate,
    CancellationResponse,
    HoldOutcome,
    HoldReleaseOutcome,
    PaymentResponse,
    SeriesChanges,
)
from .configuration import (
    ConfigurationResponse,
    ConfigurationUpdateRequest,
    ConfigurationUpdateResponse,
)
from .payment_hold import PlaceHoldRequest, SweepRequest, SweepResponse

__all__ = [
    # Booking schemas
    "BookingCancel",
    "BookingCreate",
    "BookingMutationResponse",
    "BookingResponse",
    "BookingUpdate",
    "CancellationResponse",
    "HoldOutcome",
    "HoldReleaseOutcome",
    "PaymentResponse",
    "SeriesChanges",
    # Configuration schemas
    "ConfigurationResponse",
    "ConfigurationUpdateRequest",
    "ConfigurationUpdateResponse",
    # Payment hold schemas
    "PlaceHoldRequest",
    "SweepRequest",
    "SweepResponse",
]
