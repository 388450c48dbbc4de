# backend/app/repositories/booking_repository.py
"""
Booking Repository for the CleanOps backend.

This repository handles:
- Booking CRUD operations
- Series queries (client + service type + address + frequency + date range)
- Candidate selection for the payment hold sweep
"""

from datetime import date
import logging
from typing import Iterable, List, Optional, Sequence, cast

from sqlalchemy import and_, exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import HOLD_EXCLUDED_STATUSES, Booking
from ..models.payment import Payment
from .base_repository import BaseRepository
from .payment_repository import active_hold_filter

logger = logging.getLogger(__name__)


def _status_values(statuses: Iterable[object]) -> List[str]:
    return [getattr(status, "value", status) for status in statuses]


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """Load a booking, row-locked where the database supports it."""
        try:
            query = self._build_query().filter(Booking.id == booking_id)
            if self.dialect_name == "postgresql":
                query = query.with_for_update()
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    # Series queries

    def get_series_bookings(
        self,
        *,
        client_id: str,
        service_type: str,
        address: str,
        frequencies: Sequence[str],
        after: Optional[date] = None,
        on_or_before: Optional[date] = None,
        exclude_statuses: Iterable[object] = (),
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Get bookings sharing a series key, ordered by date.

        Args:
            client_id, service_type, address: Series key attributes
            frequencies: Frequencies that count as the same series (old and new on a change)
            after: Only bookings dated strictly after this date
            on_or_before: Only bookings dated on or before this date
            exclude_statuses: Statuses to leave out
            exclude_booking_id: Booking to leave out (usually the one being edited)
        """
        if not frequencies:
            return []
        try:
            query = self._build_query().filter(
                Booking.client_id == client_id,
                Booking.service_type == service_type,
                Booking.address == address,
                Booking.service_frequency.in_(list(frequencies)),
            )
            if after is not None:
                query = query.filter(Booking.scheduled_date > after)
            if on_or_before is not None:
                query = query.filter(Booking.scheduled_date <= on_or_before)
            excluded = _status_values(exclude_statuses)
            if excluded:
                query = query.filter(Booking.status.notin_(excluded))
            if exclude_booking_id is not None:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(
                List[Booking],
                query.order_by(Booking.scheduled_date, Booking.created_at).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting series bookings for client {client_id}: {str(e)}")
            raise RepositoryException(f"Failed to get series bookings: {str(e)}")

    # Payment hold sweep

    def get_hold_sweep_candidates(self, start_date: date, end_date: date) -> List[Booking]:
        """
        Get bookings that may need a payment hold.

        Returns bookings that are:
        - Dated between start_date and end_date (inclusive, calendar dates)
        - Not CANCELLED, COMPLETED or IN_PROGRESS
        - Without an active hold

        The caller narrows the result to the exact (now, now + delay] window.
        """
        try:
            has_active_hold = exists().where(
                and_(Payment.booking_id == Booking.id, active_hold_filter())
            )
            return cast(
                List[Booking],
                self._build_query()
                .filter(
                    Booking.scheduled_date >= start_date,
                    Booking.scheduled_date <= end_date,
                    Booking.status.notin_(_status_values(HOLD_EXCLUDED_STATUSES)),
                    ~has_active_hold,
                )
                .order_by(Booking.scheduled_date, Booking.scheduled_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for payment holds: {str(e)}")
            raise RepositoryException(f"Failed to get bookings for payment holds: {str(e)}")
