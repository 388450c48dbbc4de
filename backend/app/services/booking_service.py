# backend/app/services/booking_service.py
"""
Booking Service for the CleanOps backend.

Handles the booking lifecycle operations admins perform: create (with series
generation and an inline-or-deferred payment hold), update (with series
reconciliation and hold adjustment) and cancel (holds released first, optional
fee, optional cascade to the rest of the series).

The booking change is always the primary result. Payment hold sub-steps are
best effort and reported alongside it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import (
    BookingNotFoundException,
    DomainException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from ..core.timezone_utils import business_today, scheduled_datetime, utc_now
from ..models.booking import CLOSED_STATUSES, Booking, BookingStatus, PaymentMethodType
from ..models.payment import Payment
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCancel, BookingCreate, BookingUpdate
from .base import BaseService
from .config_service import ConfigService
from .payment_hold_service import HoldReleaseResult, HoldResult, PaymentHoldService
from .recurring_booking_service import BookingSnapshot, ReconcileResult, RecurringBookingService

logger = logging.getLogger(__name__)

CLOSED_STATUS_VALUES = tuple(status.value for status in CLOSED_STATUSES)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


@dataclass
class BookingMutationResult:
    booking: Booking
    generated_instances: int = 0
    series: Optional[ReconcileResult] = None
    hold: Optional[HoldResult] = None


@dataclass
class CancellationResult:
    booking: Booking
    released_holds: List[HoldReleaseResult] = field(default_factory=list)
    fee_payment: Optional[Payment] = None
    cancelled_future: int = 0


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Centralizes the business rules around creating, editing and cancelling
    bookings, including their recurring series and payment holds.
    """

    def __init__(
        self,
        db: Session,
        *,
        hold_service: Optional[PaymentHoldService] = None,
        series_service: Optional[RecurringBookingService] = None,
        config_service: Optional[ConfigService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.config_service = config_service or ConfigService(db)
        self.hold_service = hold_service or PaymentHoldService(db, config_service=self.config_service)
        self.series_service = series_service or RecurringBookingService(
            db, hold_service=self.hold_service
        )

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        return booking

    def _validate_saved_method(self, client_id: str, payment_method_id: str) -> None:
        method = self.payment_repository.get_saved_payment_method(payment_method_id)
        if method is None or method.user_id != client_id:
            raise ValidationException(
                "Payment method does not belong to this client",
                code="INVALID_PAYMENT_METHOD",
                details={"payment_method_id": payment_method_id, "client_id": client_id},
            )

    def _run_hold_step(self, booking: Booking, step: str, action: Any) -> Optional[HoldResult]:
        """Run a hold sub-step; its failure never fails the booking operation."""
        try:
            return action()  # type: ignore[no-any-return]
        except (DomainException, RepositoryException) as e:
            self.db.rollback()
            self.logger.error(f"Payment hold {step} failed for booking {booking.id}: {str(e)}")
            return HoldResult(booking_id=booking.id, success=False, error=str(e))

    # ------------------------------------------------------------------ #
    # Create
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        data: BookingCreate,
        *,
        now: Optional[datetime] = None,
        horizon: Optional[int] = None,
    ) -> BookingMutationResult:
        """
        Create a booking and, for recurring frequencies, its future instances.

        Card-paid bookings inside the hold window get their hold right away;
        later ones are noted as deferred and picked up by the sweep.

        Raises:
            NotFoundException: If the client doesn't exist
            ValidationException: If the date is past or the saved card isn't the client's
        """
        now = now or utc_now()
        client = self.user_repository.get_by_id(data.client_id)
        if client is None:
            raise NotFoundException(f"Client {data.client_id} not found", code="CLIENT_NOT_FOUND")
        if data.scheduled_date < business_today(now):
            raise ValidationException(
                "Cannot book for past dates",
                code="PAST_DATE",
                details={"scheduled_date": data.scheduled_date.isoformat()},
            )
        # Parses the time before anything is written
        scheduled_datetime(data.scheduled_date, data.scheduled_time)
        if data.payment_method_id:
            self._validate_saved_method(client.id, data.payment_method_id)

        attributes = data.model_dump(exclude={"payment_method_id"})
        attributes = {key: _enum_value(value) for key, value in attributes.items()}

        with self.transaction():
            booking = self.booking_repository.create(**attributes)
            generated = self.series_service.materialize(booking, horizon=horizon)

        self.logger.info(
            f"Created booking {booking.id} for client {client.id} on {booking.scheduled_date} "
            f"with {generated} generated instances"
        )

        hold = None
        if booking.payment_method == PaymentMethodType.CREDIT_CARD.value and (
            booking.final_price or 0
        ) > 0:
            hold = self._run_hold_step(
                booking,
                "placement",
                lambda: self.hold_service.hold_or_defer(
                    booking, now=now, payment_method_id=data.payment_method_id
                ),
            )

        return BookingMutationResult(booking=booking, generated_instances=generated, hold=hold)

    # ------------------------------------------------------------------ #
    # Update
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("update_booking")
    def update_booking(
        self,
        booking_id: str,
        data: BookingUpdate,
        *,
        now: Optional[datetime] = None,
        horizon: Optional[int] = None,
    ) -> BookingMutationResult:
        """
        Apply changes to a booking and carry them through its series.

        Frequency changes always reconcile the series. Date and time changes
        reconcile in FUTURE mode and stay local to this booking in SINGLE mode.
        A price change re-authorizes an active hold for the new amount.
        """
        now = now or utc_now()
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        if booking.status in CLOSED_STATUS_VALUES:
            raise ValidationException(
                f"Cannot update a booking with status {booking.status}",
                code="BOOKING_CLOSED",
                details={"booking_id": booking_id, "status": booking.status},
            )

        changes: Dict[str, Any] = {
            key: _enum_value(value) for key, value in data.changes().items()
        }
        for required in ("scheduled_date", "scheduled_time", "service_type", "address"):
            if required in changes and changes[required] is None:
                raise ValidationException(f"{required} cannot be cleared", code="INVALID_UPDATE")
        new_date = changes.get("scheduled_date", booking.scheduled_date)
        new_time = changes.get("scheduled_time", booking.scheduled_time)
        scheduled_datetime(new_date, new_time)
        if "scheduled_date" in changes and new_date != booking.scheduled_date:
            if new_date < business_today(now):
                raise ValidationException(
                    "Cannot move a booking to a past date",
                    code="PAST_DATE",
                    details={"scheduled_date": new_date.isoformat()},
                )
        if data.replace_payment_method:
            self._validate_saved_method(booking.client_id, data.replace_payment_method)

        snapshot = BookingSnapshot.from_booking(booking)
        previous_price = booking.final_price

        with self.transaction():
            self.booking_repository.update(booking, **changes)
            date_changed = booking.scheduled_date != snapshot.scheduled_date
            time_changed = booking.scheduled_time != snapshot.scheduled_time
            frequency_changed = booking.service_frequency != snapshot.service_frequency
            series = None
            if frequency_changed or (
                (date_changed or time_changed) and data.update_mode == "FUTURE"
            ):
                series = self.series_service.reconcile(
                    booking, snapshot, now=now, horizon=horizon
                )

        self.logger.info(
            f"Updated booking {booking.id} ({', '.join(sorted(changes)) or 'no fields'}, "
            f"mode {data.update_mode})"
        )

        hold = None
        if data.replace_payment_method:
            hold = self._run_hold_step(
                booking,
                "replacement",
                lambda: self._replace_payment_method(booking, data.replace_payment_method, now),
            )
        elif "final_price" in changes and booking.final_price != previous_price:
            hold = self._run_hold_step(
                booking, "adjustment", lambda: self.hold_service.adjust_hold_amount(booking)
            )

        return BookingMutationResult(booking=booking, series=series, hold=hold)

    def _replace_payment_method(
        self, booking: Booking, payment_method_id: Optional[str], now: datetime
    ) -> HoldResult:
        with self.transaction():
            released = self.hold_service.release_holds(booking)
        if any(not r.success for r in released):
            return HoldResult(
                booking_id=booking.id,
                success=False,
                error="Existing payment hold could not be released",
            )
        return self.hold_service.hold_or_defer(booking, now=now, payment_method_id=payment_method_id)

    # ------------------------------------------------------------------ #
    # Cancel
    # ------------------------------------------------------------------ #

    def _cancellation_fee(self, booking: Booking, data: BookingCancel, now: datetime) -> Decimal:
        if data.charge_fee is False:
            return Decimal("0")
        configuration = self.config_service.get_configuration()
        if data.charge_fee is None:
            starts_at = scheduled_datetime(booking.scheduled_date, booking.scheduled_time)
            window = timedelta(hours=configuration.cancellation_window_hours or 0)
            if starts_at - now > window:
                return Decimal("0")
        if data.fee_amount is not None:
            return Decimal(data.fee_amount)
        return Decimal(configuration.cancellation_fee_amount or 0)

    def _release_holds_safely(self, booking: Booking) -> List[HoldReleaseResult]:
        try:
            return self.hold_service.release_holds(booking)
        except Exception as e:
            self.logger.error(
                f"Releasing payment holds for booking {booking.id} failed, cancelling anyway: {str(e)}"
            )
            return []

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, booking_id: str, data: BookingCancel, *, now: Optional[datetime] = None
    ) -> CancellationResult:
        """
        Cancel a booking.

        Active holds are released at Stripe before the status changes; a
        release failure is logged and the cancellation still goes through.
        """
        now = now or utc_now()
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise ValidationException(
                "Booking is already cancelled", code="ALREADY_CANCELLED", details={"booking_id": booking_id}
            )
        if booking.status == BookingStatus.COMPLETED.value:
            raise ValidationException(
                "Cannot cancel a completed booking", code="BOOKING_COMPLETED", details={"booking_id": booking_id}
            )

        fee = self._cancellation_fee(booking, data, now)
        released = self._release_holds_safely(booking)

        with self.transaction():
            booking.cancel(data.reason)
            fee_payment = None
            if fee > 0:
                fee_payment = self.payment_repository.create_payment_record(
                    booking_id=booking.id,
                    amount=fee,
                    status="pending",
                    description=f"Cancellation fee for booking {booking.id}",
                )
                booking.append_note(f"Cancellation fee: ${fee:.2f}")

            cancelled_future = 0
            if data.cancel_future and booking.is_recurring:
                for instance in self._future_series(booking, now):
                    released.extend(self._release_holds_safely(instance))
                    instance.cancel(data.reason)
                    instance.append_note(f"Series cancelled from booking {booking.id}")
                    cancelled_future += 1

        self.logger.info(
            f"Cancelled booking {booking.id} (fee {fee}, {len(released)} holds released, "
            f"{cancelled_future} future instances cancelled)"
        )
        return CancellationResult(
            booking=booking,
            released_holds=released,
            fee_payment=fee_payment,
            cancelled_future=cancelled_future,
        )

    def _future_series(self, booking: Booking, now: datetime) -> List[Booking]:
        today = business_today(now)
        return self.booking_repository.get_series_bookings(
            client_id=booking.client_id,
            service_type=booking.service_type,
            address=booking.address,
            frequencies=[booking.service_frequency],
            after=max(booking.scheduled_date, today),
            exclude_statuses=CLOSED_STATUSES,
            exclude_booking_id=booking.id,
        )
