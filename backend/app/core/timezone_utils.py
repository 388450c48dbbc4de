"""
Timezone utilities for the CleanOps backend.

Booking dates and times are stored as a naive calendar date plus a wall-clock
"HH:MM" string. They are interpreted in the business timezone, and every
"is this in the past" decision compares calendar dates in that zone.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

import pytz

from .config import settings
from .exceptions import ValidationException


def get_business_timezone() -> pytz.BaseTzInfo:
    """Return the configured business timezone as a pytz timezone."""
    return pytz.timezone(settings.business_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def business_today(now: Optional[datetime] = None) -> date:
    """
    Get 'today' in the business timezone.

    Args:
        now: Reference instant; naive values are treated as UTC

    Returns:
        The calendar date of `now` as seen by the business
    """
    reference = now or utc_now()
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return reference.astimezone(get_business_timezone()).date()


def parse_wall_clock(value: str) -> time:
    """Parse a "HH:MM" (or "HH:MM:SS") wall-clock string."""
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value.strip(), fmt).time()
        except (ValueError, AttributeError):
            continue
    raise ValidationException(
        f"Invalid scheduled time '{value}', expected HH:MM",
        code="INVALID_TIME",
        details={"scheduled_time": value},
    )


def scheduled_datetime(scheduled_date: date, scheduled_time: Optional[str]) -> datetime:
    """
    Build the zone-aware instant a booking starts at.

    A missing time means midnight at the start of the scheduled date.
    """
    wall_clock = parse_wall_clock(scheduled_time) if scheduled_time else time(0, 0)
    naive = datetime.combine(scheduled_date, wall_clock)
    return get_business_timezone().localize(naive)
