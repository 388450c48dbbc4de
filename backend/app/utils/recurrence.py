"""
Recurrence helpers for repeating bookings.

Every function here is pure: results depend only on the arguments, there is
no clock access, and occurrences are always computed from the anchor date
(never chained from the previous occurrence) so month-end clamping cannot drift.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Any, List, Optional

ONE_TIME = "ONE_TIME"
WEEKLY = "WEEKLY"
BIWEEKLY = "BIWEEKLY"
MONTHLY = "MONTHLY"

DAY_INTERVALS = {WEEKLY: 7, BIWEEKLY: 14}
KNOWN_FREQUENCIES = {ONE_TIME, WEEKLY, BIWEEKLY, MONTHLY}


def normalize_frequency(frequency: Any) -> Optional[str]:
    """Return the canonical frequency string, or None when no frequency is set."""

    if frequency is None:
        return None
    value = str(getattr(frequency, "value", frequency)).strip().upper()
    if value not in KNOWN_FREQUENCIES:
        raise ValueError(f"Unknown service frequency: {frequency!r}")
    return value


def is_recurring(frequency: Any) -> bool:
    return normalize_frequency(frequency) not in (None, ONE_TIME)


def add_months(anchor: date, months: int) -> date:
    """Shift a date by calendar months, clamping the day to the target month's length."""

    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def occurrence_at(anchor: date, frequency: Any, index: int) -> date:
    """Return the index-th occurrence after the anchor (index 1 is the first repeat)."""

    freq = normalize_frequency(frequency)
    if freq in DAY_INTERVALS:
        return anchor + timedelta(days=DAY_INTERVALS[freq] * index)
    if freq == MONTHLY:
        return add_months(anchor, index)
    raise ValueError(f"Frequency {freq or 'None'} has no occurrences")


def occurrences(anchor: date, frequency: Any, horizon: int) -> List[date]:
    """
    Calculate the future occurrence dates of a recurring booking.

    Args:
        anchor: Date of the booking the series starts from (not included)
        frequency: WEEKLY, BIWEEKLY, MONTHLY, ONE_TIME or None
        horizon: Number of occurrences to generate

    Returns:
        Ascending list of dates; empty for ONE_TIME or no frequency
    """
    if horizon < 0:
        raise ValueError("horizon must not be negative")

    freq = normalize_frequency(frequency)
    if freq in (None, ONE_TIME):
        return []
    return [occurrence_at(anchor, freq, index) for index in range(1, horizon + 1)]


def default_horizon(frequency: Any, months: int = 12) -> int:
    """Number of occurrences that covers a look-ahead of `months` calendar months."""

    freq = normalize_frequency(frequency)
    if freq in (None, ONE_TIME):
        return 0
    if freq == MONTHLY:
        return months
    return (months * 365) // (12 * DAY_INTERVALS[freq])


def is_occurrence(anchor: date, frequency: Any, candidate: date) -> bool:
    """Check whether `candidate` falls on the cadence that starts at `anchor` (after it)."""

    freq = normalize_frequency(frequency)
    if freq in DAY_INTERVALS:
        delta = (candidate - anchor).days
        return delta > 0 and delta % DAY_INTERVALS[freq] == 0
    if freq == MONTHLY:
        months = _months_between(anchor, candidate)
        return months >= 1 and add_months(anchor, months) == candidate
    return False


def translate(candidate: date, original_anchor: date, new_anchor: date, frequency: Any) -> date:
    """
    Move a series date along with its anchor.

    Weekly cadences move by the plain day delta. Monthly instances that sit on
    the original cadence are re-derived from the new anchor by month index, so
    a Jan 31 series moved to Jan 30 lands on Feb 28 rather than Mar 1.
    """
    freq = normalize_frequency(frequency)
    if freq == MONTHLY and is_occurrence(original_anchor, freq, candidate):
        return add_months(new_anchor, _months_between(original_anchor, candidate))
    return candidate + (new_anchor - original_anchor)
