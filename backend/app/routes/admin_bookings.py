# backend/app/routes/admin_bookings.py
"""
Admin booking routes.

Create, update and cancel bookings on behalf of clients. Responses always
describe the booking change; payment hold outcomes ride along in `hold`
(or `released_holds`) and never turn a successful booking change into an error.
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, status

from app.api.dependencies.services import get_booking_service
from app.core.exceptions import DomainException
from app.schemas.booking import (
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
from app.services.booking_service import BookingMutationResult, BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/bookings", tags=["admin-bookings"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _mutation_response(result: BookingMutationResult) -> BookingMutationResponse:
    return BookingMutationResponse(
        booking=BookingResponse.model_validate(result.booking),
        generated_instances=result.generated_instances,
        series=SeriesChanges(**result.series.to_dict()) if result.series else None,
        hold=HoldOutcome(**result.hold.to_dict()) if result.hold else None,
    )


@router.post("", response_model=BookingMutationResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingMutationResponse:
    try:
        result = booking_service.create_booking(payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _mutation_response(result)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str = Path(..., description="Booking ULID"),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = booking_service.get_booking(booking_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}", response_model=BookingMutationResponse)
def update_booking(
    payload: BookingUpdate,
    booking_id: str = Path(..., description="Booking ULID"),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingMutationResponse:
    """Update a booking; FUTURE mode (default) carries date/time edits through the series."""
    try:
        result = booking_service.update_booking(booking_id, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _mutation_response(result)


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
def cancel_booking(
    payload: BookingCancel,
    booking_id: str = Path(..., description="Booking ULID"),
    booking_service: BookingService = Depends(get_booking_service),
) -> CancellationResponse:
    try:
        result = booking_service.cancel_booking(booking_id, payload)
    except DomainException as exc:
        handle_domain_exception(exc)

    return CancellationResponse(
        booking=BookingResponse.model_validate(result.booking),
        released_holds=[HoldReleaseOutcome(**r.to_dict()) for r in result.released_holds],
        fee_payment=PaymentResponse.model_validate(result.fee_payment) if result.fee_payment else None,
        cancelled_future=result.cancelled_future,
    )
