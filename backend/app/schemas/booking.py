# backend/app/schemas/booking.py
"""
Booking schemas for the CleanOps admin API.

Dates are calendar dates and times are "HH:MM" wall-clock strings in the
business timezone; both are stored on the booking exactly as sent.
"""

from datetime import date, datetime
from decimal import Decimal
import re
from typing import Any, List, Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from ..models.booking import BookingStatus, PaymentMethodType, ServiceFrequency
from .base import Money, StandardizedModel, StrictRequestModel

DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_REGEX = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

UpdateMode = Literal["SINGLE", "FUTURE"]


def _ensure_date_only(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not DATE_ONLY_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be a YYYY-MM-DD date-only string")
        return candidate
    return value


def _ensure_wall_clock(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    candidate = value.strip()
    if len(candidate) == 8 and candidate.endswith(":00"):
        candidate = candidate[:5]
    if not TIME_REGEX.fullmatch(candidate):
        raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return candidate


class BookingCreate(StrictRequestModel):
    """Create a booking; recurring frequencies also generate the series."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, use_enum_values=True)

    client_id: str = Field(..., description="Client the booking is for")
    cleaner_id: Optional[str] = Field(None, description="Assigned cleaner")
    service_type: str = Field(..., min_length=1, max_length=100)
    scheduled_date: date = Field(..., description="Calendar date of the visit")
    scheduled_time: str = Field(..., description="Start time (HH:MM)")
    duration_hours: Optional[Decimal] = Field(None, ge=0)
    address: str = Field(..., min_length=1)
    service_frequency: ServiceFrequency = ServiceFrequency.ONE_TIME
    status: BookingStatus = BookingStatus.PENDING
    special_instructions: Optional[str] = Field(None, max_length=2000)
    final_price: Optional[Decimal] = Field(None, ge=0)
    cleaner_payment_amount: Optional[Decimal] = Field(None, ge=0)
    payment_method: Optional[PaymentMethodType] = None
    payment_method_id: Optional[str] = Field(
        None, description="Saved card to authorize the payment hold against"
    )
    house_square_footage: Optional[int] = Field(None, ge=0)
    basement_square_footage: Optional[int] = Field(None, ge=0)
    number_of_bedrooms: Optional[int] = Field(None, ge=0)
    number_of_bathrooms: Optional[int] = Field(None, ge=0)
    number_of_cleaners_requested: Optional[int] = Field(None, ge=1)
    selected_extras: Optional[List[str]] = None

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "scheduled_date")

    @field_validator("scheduled_time")
    @classmethod
    def _validate_time(cls, v: str) -> str:
        return _ensure_wall_clock(v) or v

    @field_validator("status")
    @classmethod
    def _validate_initial_status(cls, v: BookingStatus) -> BookingStatus:
        if v not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise ValueError("New bookings must be PENDING or CONFIRMED")
        return v


class BookingUpdate(StrictRequestModel):
    """
    Partial booking update.

    update_mode FUTURE (default) carries date and time edits through the rest
    of the series; SINGLE edits only this booking. Frequency changes always
    reconcile the series.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True, use_enum_values=True)

    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    service_frequency: Optional[ServiceFrequency] = None
    service_type: Optional[str] = Field(None, min_length=1, max_length=100)
    address: Optional[str] = Field(None, min_length=1)
    cleaner_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    duration_hours: Optional[Decimal] = Field(None, ge=0)
    special_instructions: Optional[str] = Field(None, max_length=2000)
    final_price: Optional[Decimal] = Field(None, ge=0)
    cleaner_payment_amount: Optional[Decimal] = Field(None, ge=0)
    payment_method: Optional[PaymentMethodType] = None
    selected_extras: Optional[List[str]] = None
    update_mode: UpdateMode = "FUTURE"
    replace_payment_method: Optional[str] = Field(
        None, description="Saved card that replaces the current payment hold"
    )

    @field_validator("scheduled_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "scheduled_date")

    @field_validator("scheduled_time")
    @classmethod
    def _validate_time(cls, v: Optional[str]) -> Optional[str]:
        return _ensure_wall_clock(v)

    @field_validator("status")
    @classmethod
    def _reject_cancel_via_update(cls, v: Optional[BookingStatus]) -> Optional[BookingStatus]:
        if v == BookingStatus.CANCELLED:
            raise ValueError("Use the cancel endpoint to cancel a booking")
        return v

    def changes(self) -> dict[str, Any]:
        """Booking columns explicitly set in the request."""
        return self.model_dump(
            exclude_unset=True,
            exclude={"update_mode", "replace_payment_method"},
            mode="python",
        )


class BookingCancel(StrictRequestModel):
    """Schema for cancelling a booking."""

    reason: str = Field(..., min_length=1, max_length=500, description="Cancellation reason")
    charge_fee: Optional[bool] = Field(
        None, description="Force (true) or waive (false) the fee; omitted applies the window rule"
    )
    fee_amount: Optional[Decimal] = Field(None, ge=0, description="Overrides the configured fee")
    cancel_future: bool = Field(False, description="Also cancel later bookings of the series")

    @field_validator("reason")
    @classmethod
    def clean_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Cancellation reason cannot be empty")
        return v


class PaymentResponse(StandardizedModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)

    id: str
    booking_id: str
    amount: Money
    status: str
    description: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    is_captured: bool
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BookingResponse(StandardizedModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)

    id: str
    client_id: str
    cleaner_id: Optional[str] = None
    service_type: str
    scheduled_date: date
    scheduled_time: str
    duration_hours: Optional[Money] = None
    address: str
    service_frequency: Optional[str] = None
    status: str
    special_instructions: Optional[str] = None
    final_price: Optional[Money] = None
    cleaner_payment_amount: Optional[Money] = None
    payment_method: Optional[str] = None
    payment_details: Optional[str] = None
    selected_extras: Optional[List[str]] = None
    is_generated: bool = False
    cancelled_at: Optional[datetime] = None
    payments: List[PaymentResponse] = Field(default_factory=list)


class HoldOutcome(StandardizedModel):
    """Secondary outcome of the payment hold step of a booking operation."""

    booking_id: str
    success: bool
    payment_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    skipped_reason: Optional[str] = None


class HoldReleaseOutcome(StandardizedModel):
    payment_id: str
    payment_intent_id: Optional[str] = None
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None


class SeriesChanges(StandardizedModel):
    created: int = 0
    shifted: int = 0
    removed: int = 0
    updated: int = 0


class BookingMutationResponse(StandardizedModel):
    booking: BookingResponse
    generated_instances: int = 0
    series: Optional[SeriesChanges] = None
    hold: Optional[HoldOutcome] = None


class CancellationResponse(StandardizedModel):
    booking: BookingResponse
    released_holds: List[HoldReleaseOutcome] = Field(default_factory=list)
    fee_payment: Optional[PaymentResponse] = None
    cancelled_future: int = 0
