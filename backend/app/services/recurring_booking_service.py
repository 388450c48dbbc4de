"""
Recurring booking series for the CleanOps backend.

A series has no table of its own. It is the set of bookings sharing a series
key (client, service type, address, frequency), each an independent row. This
service generates the future instances of a new recurring booking and keeps
them consistent when one member's date, time or frequency is edited.

Neither operation commits: the caller (BookingService) owns the transaction so
a booking edit and its series changes land together.
"""

from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ValidationException
from ..core.timezone_utils import business_today
from ..models.booking import CLOSED_STATUSES, Booking, BookingStatus, SeriesKey
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..utils import recurrence
from .base import BaseService

logger = logging.getLogger(__name__)

# Parent statuses a generated instance inherits; anything else starts PENDING
INHERITED_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


@dataclass(frozen=True)
class BookingSnapshot:
    """The series-relevant fields of a booking, captured before an edit."""

    client_id: str
    service_type: str
    address: str
    scheduled_date: date
    scheduled_time: Optional[str]
    service_frequency: Optional[str]

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingSnapshot":
        return cls(
            client_id=booking.client_id,
            service_type=booking.service_type,
            address=booking.address,
            scheduled_date=booking.scheduled_date,
            scheduled_time=booking.scheduled_time,
            service_frequency=booking.service_frequency,
        )

    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.client_id, self.service_type, self.address, self.service_frequency)


@dataclass
class ReconcileResult:
    created: int = 0
    shifted: int = 0
    removed: int = 0
    updated: int = 0

    @property
    def changed(self) -> bool:
        return any((self.created, self.shifted, self.removed, self.updated))

    def to_dict(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "shifted": self.shifted,
            "removed": self.removed,
            "updated": self.updated,
        }


def _frequency(value: Any) -> Optional[str]:
    try:
        return recurrence.normalize_frequency(value)
    except ValueError as e:
        raise ValidationException(str(e), code="INVALID_FREQUENCY", details={"frequency": value})


class RecurringBookingService(BaseService):
    """Generates and reconciles the instances of recurring bookings."""

    def __init__(self, db: Session, hold_service: Optional[Any] = None):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self._hold_service = hold_service

    @property
    def hold_service(self) -> Any:
        if self._hold_service is None:
            from .payment_hold_service import PaymentHoldService

            self._hold_service = PaymentHoldService(self.db)
        return self._hold_service

    def resolve_horizon(self, frequency: Optional[str], horizon: Optional[int]) -> int:
        if horizon is not None:
            if horizon < 0:
                raise ValidationException("horizon must not be negative", code="INVALID_HORIZON")
            return horizon
        return recurrence.default_horizon(frequency, settings.recurrence_horizon_months)

    def _instance_attributes(self, parent: Booking, scheduled_date: date) -> Dict[str, Any]:
        attributes = parent.copy_series_attributes()
        attributes.update(
            scheduled_date=scheduled_date,
            status=parent.status if parent.status in INHERITED_STATUSES else BookingStatus.PENDING.value,
            is_generated=True,
        )
        return attributes

    # ------------------------------------------------------------------ #
    # Materialize
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("materialize_series")
    def materialize(
        self, parent: Booking, frequency: Optional[str] = None, horizon: Optional[int] = None
    ) -> int:
        """
        Create the future instances of a newly created recurring booking.

        Args:
            parent: The persisted booking the series starts from
            frequency: Series frequency (defaults to the parent's)
            horizon: Number of instances; defaults to the configured look-ahead

        Returns:
            Number of bookings created (0 for one-time bookings)
        """
        freq = _frequency(frequency if frequency is not None else parent.service_frequency)
        if not recurrence.is_recurring(freq):
            return 0

        dates = recurrence.occurrences(parent.scheduled_date, freq, self.resolve_horizon(freq, horizon))
        for occurrence in dates:
            self.booking_repository.create(**self._instance_attributes(parent, occurrence))

        self.logger.info(
            f"Generated {len(dates)} {freq} instances for booking {parent.id} "
            f"starting {parent.scheduled_date}"
        )
        prometheus_metrics.inc_series_changes("created", len(dates))
        return len(dates)

    # ------------------------------------------------------------------ #
    # Reconcile
    # ------------------------------------------------------------------ #

    def _series_members(
        self,
        keys: Iterable[SeriesKey],
        frequencies: List[str],
        after: date,
        exclude_booking_id: str,
        exclude_statuses: Iterable[object] = (),
    ) -> List[Booking]:
        members: Dict[str, Booking] = {}
        for key in keys:
            for member in self.booking_repository.get_series_bookings(
                client_id=key.client_id,
                service_type=key.service_type,
                address=key.address,
                frequencies=frequencies,
                after=after,
                exclude_statuses=exclude_statuses,
                exclude_booking_id=exclude_booking_id,
            ):
                members[member.id] = member
        return sorted(members.values(), key=lambda b: (b.scheduled_date, b.id))

    def _propagate(self, instance: Booking, booking: Booking, shift_time: bool) -> bool:
        """Copy the edited booking's key attributes onto an instance; True if anything changed."""
        changes = {
            "service_type": booking.service_type,
            "address": booking.address,
            "service_frequency": booking.service_frequency,
        }
        if shift_time:
            changes["scheduled_time"] = booking.scheduled_time
        changed = False
        for field_name, value in changes.items():
            if getattr(instance, field_name) != value:
                setattr(instance, field_name, value)
                changed = True
        return changed

    @BaseService.measure_operation("reconcile_series")
    def reconcile(
        self,
        booking: Booking,
        previous_state: BookingSnapshot,
        *,
        now: Optional[datetime] = None,
        horizon: Optional[int] = None,
        shift_time_of_day: Optional[bool] = None,
    ) -> ReconcileResult:
        """
        Bring the rest of a series in line with an edited member.

        Only instances dated after the business "today" are touched; anything
        on or before it is history. Running this twice with the same
        arguments changes nothing the second time.

        Args:
            booking: The edited booking, already carrying its new values
            previous_state: Snapshot of the booking taken before the edit
            now: Reference instant for "today" (defaults to the current time)
            horizon: Number of expected occurrences after a frequency change
            shift_time_of_day: Give moved/kept instances the new time of day

        Returns:
            ReconcileResult with created/shifted/removed/updated counts
        """
        result = ReconcileResult()
        old_frequency = _frequency(previous_state.service_frequency)
        new_frequency = _frequency(booking.service_frequency)

        if not recurrence.is_recurring(old_frequency) and not recurrence.is_recurring(new_frequency):
            return result

        today = business_today(now)
        shift_time = (
            settings.recurrence_shift_time_of_day if shift_time_of_day is None else shift_time_of_day
        )
        frequencies = sorted({f for f in (old_frequency, new_frequency) if recurrence.is_recurring(f)})
        keys = {previous_state.series_key._replace(frequency=None), booking.series_key._replace(frequency=None)}

        downstream = self._series_members(
            keys,
            frequencies,
            after=previous_state.scheduled_date,
            exclude_booking_id=booking.id,
            exclude_statuses=CLOSED_STATUSES,
        )
        # Only instances of the original series are downstream unless it was one-time
        if recurrence.is_recurring(old_frequency):
            future = [b for b in downstream if b.scheduled_date > today]
        else:
            future = []

        if old_frequency == new_frequency:
            self._shift_series(booking, previous_state, future, keys, frequencies, today, shift_time, result)
        else:
            self._realign_series(
                booking, previous_state, future, keys, frequencies, today, shift_time, horizon, result
            )

        if result.changed:
            self.db.flush()
            self.logger.info(
                f"Reconciled series of booking {booking.id} "
                f"({old_frequency} -> {new_frequency}, {previous_state.scheduled_date} -> "
                f"{booking.scheduled_date}): {result.to_dict()}"
            )
            for change, count in result.to_dict().items():
                prometheus_metrics.inc_series_changes(change, count)
        return result

    def _occupied_dates(
        self, keys: Iterable[SeriesKey], frequencies: List[str], booking: Booking, exclude_ids: Set[str]
    ) -> Set[date]:
        """Dates already taken in the series by bookings of any status outside `exclude_ids`."""
        earliest = date.min
        occupied = {
            b.scheduled_date
            for b in self._series_members(keys, frequencies, after=earliest, exclude_booking_id=booking.id)
            if b.id not in exclude_ids
        }
        occupied.add(booking.scheduled_date)
        return occupied

    def _shift_series(
        self,
        booking: Booking,
        previous_state: BookingSnapshot,
        future: List[Booking],
        keys: Iterable[SeriesKey],
        frequencies: List[str],
        today: date,
        shift_time: bool,
        result: ReconcileResult,
    ) -> None:
        frequency = booking.service_frequency
        original_anchor = previous_state.scheduled_date
        new_anchor = booking.scheduled_date

        if original_anchor == new_anchor:
            for instance in future:
                if self._propagate(instance, booking, shift_time):
                    result.updated += 1
            return

        occupied = self._occupied_dates(keys, frequencies, booking, {b.id for b in future})
        for instance in future:
            # Only instances still on the old cadence move; anything already on the
            # new cadence, or edited off both, has been placed and stays put.
            if recurrence.is_occurrence(new_anchor, frequency, instance.scheduled_date) or not (
                recurrence.is_occurrence(original_anchor, frequency, instance.scheduled_date)
            ):
                if self._propagate(instance, booking, shift_time):
                    result.updated += 1
                continue
            target = recurrence.translate(instance.scheduled_date, original_anchor, new_anchor, frequency)
            if target <= today or target in occupied:
                self.logger.warning(
                    f"Not moving booking {instance.id} from {instance.scheduled_date} to {target}: "
                    f"{'date is not in the future' if target <= today else 'date already booked in series'}"
                )
                if self._propagate(instance, booking, shift_time):
                    result.updated += 1
                occupied.add(instance.scheduled_date)
                continue
            instance.scheduled_date = target
            self._propagate(instance, booking, shift_time)
            occupied.add(target)
            result.shifted += 1

    def _realign_series(
        self,
        booking: Booking,
        previous_state: BookingSnapshot,
        future: List[Booking],
        keys: Iterable[SeriesKey],
        frequencies: List[str],
        today: date,
        shift_time: bool,
        horizon: Optional[int],
        result: ReconcileResult,
    ) -> None:
        new_frequency = recurrence.normalize_frequency(booking.service_frequency)
        expected = set(
            recurrence.occurrences(
                booking.scheduled_date, new_frequency, self.resolve_horizon(new_frequency, horizon)
            )
        )

        for instance in future:
            if instance.scheduled_date in expected:
                if self._propagate(instance, booking, shift_time):
                    result.updated += 1
            else:
                self._remove_instance(instance, new_frequency)
                result.removed += 1

        existing = {
            b.scheduled_date
            for b in self._series_members(
                keys, frequencies, after=booking.scheduled_date, exclude_booking_id=booking.id
            )
        }
        for occurrence in sorted(expected):
            if occurrence <= today or occurrence in existing:
                continue
            self.booking_repository.create(**self._instance_attributes(booking, occurrence))
            result.created += 1

    def _remove_instance(self, instance: Booking, new_frequency: Optional[str]) -> None:
        """Delete an off-cadence instance, or cancel it when it carries payment history."""
        if instance.payments:
            self.hold_service.release_holds(instance)
            instance.cancel()
            instance.append_note(
                f"Removed from series after frequency change to {new_frequency or 'ONE_TIME'}"
            )
            self.logger.info(f"Cancelled off-cadence booking {instance.id} ({instance.scheduled_date})")
        else:
            self.logger.info(f"Deleted off-cadence booking {instance.id} ({instance.scheduled_date})")
            self.booking_repository.delete(instance)
