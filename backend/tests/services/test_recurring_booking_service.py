# backend/tests/services/test_recurring_booking_service.py
"""
Tests for recurring series generation and reconciliation.

Dates are calendar dates in the business timezone (America/New_York); each
test pins "now" so the history boundary is deterministic.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import ValidationException
from app.models.booking import Booking, BookingStatus
from app.schemas.booking import BookingUpdate
from app.services.booking_service import BookingService
from app.services.recurring_booking_service import (
    BookingSnapshot,
    ReconcileResult,
    RecurringBookingService,
)

# Business "today" is 2024-12-31 for the January series
NEW_YEARS_EVE = datetime(2024, 12, 31, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def series_service(db, hold_service):
    return RecurringBookingService(db, hold_service=hold_service)


@pytest.fixture
def booking_service(db, hold_service):
    return BookingService(db, hold_service=hold_service)


@pytest.fixture
def weekly_series(db, make_booking, series_service):
    """A WEEKLY booking on 2025-01-01 with three generated instances."""
    parent = make_booking(date(2025, 1, 1), service_frequency="WEEKLY")
    series_service.materialize(parent, horizon=3)
    db.commit()
    return parent


def _series(db, booking):
    return (
        db.query(Booking)
        .filter(
            Booking.client_id == booking.client_id,
            Booking.service_type == booking.service_type,
            Booking.address == booking.address,
        )
        .order_by(Booking.scheduled_date)
        .all()
    )


def _active_dates(db, booking):
    return [
        b.scheduled_date
        for b in _series(db, booking)
        if b.status != BookingStatus.CANCELLED.value
    ]


class TestMaterialize:
    def test_weekly_series(self, db, make_booking, series_service):
        """A weekly booking on Jan 1 gets instances on Jan 8, 15 and 22."""
        parent = make_booking(
            date(2025, 1, 1),
            service_frequency="WEEKLY",
            special_instructions="Use the side door",
            number_of_bedrooms=3,
            selected_extras=["inside_fridge"],
        )

        created = series_service.materialize(parent, horizon=3)
        db.commit()

        assert created == 3
        instances = [b for b in _series(db, parent) if b.id != parent.id]
        assert [b.scheduled_date for b in instances] == [
            date(2025, 1, 8),
            date(2025, 1, 15),
            date(2025, 1, 22),
        ]
        for instance in instances:
            assert instance.is_generated is True
            assert instance.status == BookingStatus.CONFIRMED.value
            assert instance.service_frequency == "WEEKLY"
            assert instance.scheduled_time == parent.scheduled_time
            assert instance.final_price == Decimal("120.00")
            assert instance.special_instructions == "Use the side door"
            assert instance.number_of_bedrooms == 3
            assert instance.selected_extras == ["inside_fridge"]
            assert instance.payments == []
            assert instance.payment_details is None

    def test_one_time_creates_nothing(self, db, make_booking, series_service):
        parent = make_booking(date(2025, 1, 1), service_frequency="ONE_TIME")

        assert series_service.materialize(parent, horizon=5) == 0
        assert len(_series(db, parent)) == 1

    def test_default_horizon_covers_a_year_of_months(self, db, make_booking, series_service):
        parent = make_booking(date(2025, 1, 31), service_frequency="MONTHLY")

        created = series_service.materialize(parent)
        db.commit()

        assert created == 12
        dates = [b.scheduled_date for b in _series(db, parent)]
        assert dates[1] == date(2025, 2, 28)
        assert dates[2] == date(2025, 3, 31)

    def test_unheld_statuses_start_pending(self, db, make_booking, series_service):
        parent = make_booking(
            date(2025, 1, 1), service_frequency="WEEKLY", status=BookingStatus.IN_PROGRESS.value
        )

        series_service.materialize(parent, horizon=2)
        db.commit()

        instances = [b for b in _series(db, parent) if b.id != parent.id]
        assert {b.status for b in instances} == {BookingStatus.PENDING.value}

    def test_negative_horizon_rejected(self, make_booking, series_service):
        parent = make_booking(date(2025, 1, 1), service_frequency="WEEKLY")

        with pytest.raises(ValidationException) as exc_info:
            series_service.materialize(parent, horizon=-1)
        assert exc_info.value.code == "INVALID_HORIZON"

    def test_unknown_frequency_rejected(self, make_booking, series_service):
        parent = make_booking(date(2025, 1, 1), service_frequency="WEEKLY")

        with pytest.raises(ValidationException) as exc_info:
            series_service.materialize(parent, frequency="DAILY")
        assert exc_info.value.code == "INVALID_FREQUENCY"


class TestReconcileFrequencyChange:
    def test_weekly_to_biweekly(self, db, weekly_series, booking_service):
        """Jan 8 and Jan 22 go, Jan 15 stays as the same row, Jan 29 and Feb 12 are added."""
        kept = next(b for b in _series(db, weekly_series) if b.scheduled_date == date(2025, 1, 15))
        kept_id = kept.id

        result = booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(service_frequency="BIWEEKLY"),
            now=NEW_YEARS_EVE,
            horizon=3,
        )

        assert result.series.to_dict() == {"created": 2, "shifted": 0, "removed": 2, "updated": 1}
        bookings = _series(db, weekly_series)
        assert [b.scheduled_date for b in bookings] == [
            date(2025, 1, 1),
            date(2025, 1, 15),
            date(2025, 1, 29),
            date(2025, 2, 12),
        ]
        assert {b.service_frequency for b in bookings} == {"BIWEEKLY"}
        assert bookings[1].id == kept_id

    def test_occurrence_match_ignores_time_of_day(self, db, weekly_series, booking_service):
        """An instance on an expected date is kept even if its start time differs."""
        instance = next(
            b for b in _series(db, weekly_series) if b.scheduled_date == date(2025, 1, 15)
        )
        instance.scheduled_time = "16:45"
        db.commit()

        result = booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(service_frequency="BIWEEKLY"),
            now=NEW_YEARS_EVE,
            horizon=3,
        )

        db.refresh(instance)
        assert result.series.removed == 2
        assert instance.status == BookingStatus.CONFIRMED.value
        assert instance.scheduled_time == "10:00"

    def test_reconcile_twice_changes_nothing(self, db, weekly_series, series_service):
        snapshot = BookingSnapshot.from_booking(weekly_series)
        weekly_series.service_frequency = "BIWEEKLY"
        db.flush()

        first = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE, horizon=3)
        db.commit()
        dates_after_first = _active_dates(db, weekly_series)
        second = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE, horizon=3)
        db.commit()

        assert first.changed is True
        assert second == ReconcileResult()
        assert _active_dates(db, weekly_series) == dates_after_first

    def test_past_instances_are_preserved(self, db, make_booking, series_service, booking_service):
        """Past instances stay put even when they no longer fit the new cadence."""
        parent = make_booking(date(2025, 1, 1), service_frequency="WEEKLY")
        series_service.materialize(parent, horizon=4)
        db.commit()
        # Business today is Jan 16
        now = datetime(2025, 1, 16, 15, 0, tzinfo=timezone.utc)

        result = booking_service.update_booking(
            parent.id, BookingUpdate(service_frequency="BIWEEKLY"), now=now, horizon=4
        )

        assert result.series.to_dict() == {"created": 2, "shifted": 0, "removed": 1, "updated": 1}
        by_date = {b.scheduled_date: b for b in _series(db, parent)}
        for past in (date(2025, 1, 8), date(2025, 1, 15)):
            assert by_date[past].status == BookingStatus.CONFIRMED.value
            assert by_date[past].service_frequency == "WEEKLY"
        assert date(2025, 1, 22) not in by_date
        assert by_date[date(2025, 1, 29)].service_frequency == "BIWEEKLY"
        assert date(2025, 2, 12) in by_date
        assert date(2025, 2, 26) in by_date

    def test_yesterdays_booking_changed_to_monthly(
        self, db, make_booking, series_service, booking_service
    ):
        """Editing yesterday's WEEKLY instance leaves it and older history alone."""
        parent = make_booking(date(2025, 3, 2), service_frequency="WEEKLY")
        series_service.materialize(parent, horizon=4)
        db.commit()
        yesterday = next(b for b in _series(db, parent) if b.scheduled_date == date(2025, 3, 9))
        # Business today is Mar 10
        now = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)

        result = booking_service.update_booking(
            yesterday.id, BookingUpdate(service_frequency="MONTHLY"), now=now, horizon=3
        )

        assert result.series.to_dict() == {"created": 3, "shifted": 0, "removed": 3, "updated": 0}
        bookings = _series(db, parent)
        assert [(b.scheduled_date, b.service_frequency) for b in bookings] == [
            (date(2025, 3, 2), "WEEKLY"),
            (date(2025, 3, 9), "MONTHLY"),
            (date(2025, 4, 9), "MONTHLY"),
            (date(2025, 5, 9), "MONTHLY"),
            (date(2025, 6, 9), "MONTHLY"),
        ]
        assert bookings[0].status == BookingStatus.CONFIRMED.value
        assert bookings[1].status == BookingStatus.CONFIRMED.value

    def test_removed_instance_with_payments_is_cancelled(
        self, db, weekly_series, booking_service, make_hold, mock_stripe_service
    ):
        off_cadence = next(
            b for b in _series(db, weekly_series) if b.scheduled_date == date(2025, 1, 8)
        )
        hold = make_hold(off_cadence)

        booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(service_frequency="BIWEEKLY"),
            now=NEW_YEARS_EVE,
            horizon=3,
        )

        db.refresh(off_cadence)
        db.refresh(hold)
        assert off_cadence.status == BookingStatus.CANCELLED.value
        assert "Removed from series after frequency change to BIWEEKLY" in (
            off_cadence.special_instructions
        )
        mock_stripe_service.cancel_payment_intent.assert_called_once_with("pi_existing")
        assert hold.status == "canceled"

    def test_at_most_one_booking_per_date(
        self, db, weekly_series, booking_service, make_hold
    ):
        make_hold(next(b for b in _series(db, weekly_series) if b.scheduled_date == date(2025, 1, 8)))

        booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(service_frequency="BIWEEKLY"),
            now=NEW_YEARS_EVE,
            horizon=3,
        )

        dates = [b.scheduled_date for b in _series(db, weekly_series)]
        assert len(dates) == len(set(dates))

    def test_one_time_becomes_weekly(self, db, make_booking, series_service):
        booking = make_booking(date(2025, 1, 1), service_frequency="ONE_TIME")
        snapshot = BookingSnapshot.from_booking(booking)
        booking.service_frequency = "WEEKLY"
        db.flush()

        result = series_service.reconcile(booking, snapshot, now=NEW_YEARS_EVE, horizon=2)
        db.commit()
        rerun = series_service.reconcile(booking, snapshot, now=NEW_YEARS_EVE, horizon=2)

        assert result.created == 2
        assert rerun == ReconcileResult()
        assert _active_dates(db, booking) == [date(2025, 1, 1), date(2025, 1, 8), date(2025, 1, 15)]

    def test_weekly_becomes_one_time(self, db, weekly_series, booking_service):
        result = booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(service_frequency="ONE_TIME"),
            now=NEW_YEARS_EVE,
            horizon=3,
        )

        assert result.series.removed == 3
        assert result.series.created == 0
        assert _active_dates(db, weekly_series) == [date(2025, 1, 1)]

    def test_other_series_untouched(self, db, weekly_series, make_booking, booking_service):
        neighbour = make_booking(
            date(2025, 1, 8), service_frequency="WEEKLY", address="99 Elm Avenue, Springfield"
        )

        booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(service_frequency="BIWEEKLY"),
            now=NEW_YEARS_EVE,
            horizon=3,
        )

        db.refresh(neighbour)
        assert neighbour.scheduled_date == date(2025, 1, 8)
        assert neighbour.service_frequency == "WEEKLY"


class TestReconcileDateShift:
    def test_shift_moves_instances_in_place(self, db, weekly_series, booking_service):
        original_ids = [b.id for b in _series(db, weekly_series)]

        result = booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(scheduled_date=date(2025, 1, 3)),
            now=NEW_YEARS_EVE,
        )

        assert result.series.shifted == 3
        bookings = _series(db, weekly_series)
        assert [b.scheduled_date for b in bookings] == [
            date(2025, 1, 3),
            date(2025, 1, 10),
            date(2025, 1, 17),
            date(2025, 1, 24),
        ]
        assert [b.id for b in bookings] == original_ids

    def test_shift_is_idempotent(self, db, weekly_series, series_service):
        snapshot = BookingSnapshot.from_booking(weekly_series)
        weekly_series.scheduled_date = date(2025, 1, 3)
        db.flush()

        first = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE)
        db.commit()
        second = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE)

        assert first.shifted == 3
        assert second == ReconcileResult()

    def test_single_mode_leaves_series_alone(self, db, weekly_series, booking_service):
        result = booking_service.update_booking(
            weekly_series.id,
            BookingUpdate(scheduled_date=date(2025, 1, 3), update_mode="SINGLE"),
            now=NEW_YEARS_EVE,
        )

        assert result.series is None
        assert _active_dates(db, weekly_series) == [
            date(2025, 1, 3),
            date(2025, 1, 8),
            date(2025, 1, 15),
            date(2025, 1, 22),
        ]

    def test_occupied_target_is_not_doubled(self, db, weekly_series, make_booking, series_service):
        """An instance whose target date is already taken in the series stays where it is."""
        make_booking(
            date(2025, 1, 17), service_frequency="WEEKLY", status=BookingStatus.CANCELLED.value
        )
        snapshot = BookingSnapshot.from_booking(weekly_series)
        weekly_series.scheduled_date = date(2025, 1, 3)
        db.flush()

        result = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE)
        db.commit()
        rerun = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE)
        db.commit()

        assert result.shifted == 2
        assert rerun == ReconcileResult()
        dates = [b.scheduled_date for b in _series(db, weekly_series)]
        assert dates == [
            date(2025, 1, 3),
            date(2025, 1, 10),
            date(2025, 1, 15),
            date(2025, 1, 17),
            date(2025, 1, 24),
        ]

    def test_edited_off_cadence_instance_stays_put(self, db, weekly_series, series_service):
        """An instance already moved by hand is neither on the old nor the new cadence."""
        instances = [b for b in _series(db, weekly_series) if b.id != weekly_series.id]
        instances[1].scheduled_date = date(2025, 1, 16)
        db.commit()
        snapshot = BookingSnapshot.from_booking(weekly_series)
        weekly_series.scheduled_date = date(2025, 1, 3)
        db.flush()

        first = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE)
        db.commit()
        second = series_service.reconcile(weekly_series, snapshot, now=NEW_YEARS_EVE)

        assert first.shifted == 2
        assert second == ReconcileResult()
        assert _active_dates(db, weekly_series) == [
            date(2025, 1, 3),
            date(2025, 1, 10),
            date(2025, 1, 16),
            date(2025, 1, 24),
        ]

    def test_time_change_propagates_by_default(self, db, weekly_series, booking_service):
        result = booking_service.update_booking(
            weekly_series.id, BookingUpdate(scheduled_time="14:30"), now=NEW_YEARS_EVE
        )

        assert result.series.updated == 3
        assert {b.scheduled_time for b in _series(db, weekly_series)} == {"14:30"}

    def test_time_change_can_stay_local(self, db, weekly_series, series_service):
        snapshot = BookingSnapshot.from_booking(weekly_series)
        weekly_series.scheduled_time = "14:30"
        db.flush()

        result = series_service.reconcile(
            weekly_series, snapshot, now=NEW_YEARS_EVE, shift_time_of_day=False
        )

        assert result == ReconcileResult()
        instances = [b for b in _series(db, weekly_series) if b.id != weekly_series.id]
        assert {b.scheduled_time for b in instances} == {"10:00"}

    def test_non_recurring_edit_is_a_no_op(self, make_booking, series_service):
        booking = make_booking(date(2025, 1, 1))
        snapshot = BookingSnapshot.from_booking(booking)
        booking.scheduled_date = date(2025, 1, 2)

        assert series_service.reconcile(booking, snapshot, now=NEW_YEARS_EVE) == ReconcileResult()
