# backend/app/routes/admin_payment_holds.py
"""Admin routes for placing, releasing and capturing payment holds."""

import logging
from typing import List

from fastapi import APIRouter, Body, Depends, Path

from app.api.dependencies.services import get_payment_hold_service
from app.core.exceptions import BookingNotFoundException, DomainException
from app.routes.admin_bookings import handle_domain_exception
from app.schemas.booking import HoldOutcome, HoldReleaseOutcome, PaymentResponse
from app.schemas.payment_hold import PlaceHoldRequest, SweepRequest, SweepResponse
from app.services.payment_hold_service import PaymentHoldService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/payment-holds", tags=["admin-payment-holds"])


@router.post("/bookings/{booking_id}", response_model=HoldOutcome)
def place_hold(
    booking_id: str = Path(..., description="Booking ULID"),
    payload: PlaceHoldRequest = Body(default_factory=PlaceHoldRequest),
    hold_service: PaymentHoldService = Depends(get_payment_hold_service),
) -> HoldOutcome:
    """Place a hold now, regardless of the configured window."""
    try:
        booking = hold_service.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        result = hold_service.place_hold(booking, payment_method_id=payload.payment_method_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return HoldOutcome(**result.to_dict())


@router.delete("/bookings/{booking_id}", response_model=List[HoldReleaseOutcome])
def release_holds(
    booking_id: str = Path(..., description="Booking ULID"),
    hold_service: PaymentHoldService = Depends(get_payment_hold_service),
) -> List[HoldReleaseOutcome]:
    try:
        released = hold_service.cancel_hold(booking_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return [HoldReleaseOutcome(**r.to_dict()) for r in released]


@router.post("/payments/{payment_id}/capture", response_model=PaymentResponse)
def capture_hold(
    payment_id: str = Path(..., description="Payment ULID"),
    hold_service: PaymentHoldService = Depends(get_payment_hold_service),
) -> PaymentResponse:
    try:
        payment = hold_service.capture_hold(payment_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return PaymentResponse.model_validate(payment)


@router.post("/sweep", response_model=SweepResponse)
def run_sweep(
    payload: SweepRequest = Body(default_factory=SweepRequest),
    hold_service: PaymentHoldService = Depends(get_payment_hold_service),
) -> SweepResponse:
    """Run the hold sweep inline and return its summary."""
    try:
        result = hold_service.sweep(payload.override_delay_hours)
    except DomainException as exc:
        handle_domain_exception(exc)
    return SweepResponse(**result.to_dict())
