"""Payment hold timing rules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional


def should_hold_now(scheduled_at: datetime, now: datetime, delay_hours: Optional[int]) -> bool:
    """
    Decide whether a payment hold should be placed now or deferred.

    Args:
        scheduled_at: When the booking starts (timezone-aware)
        now: Reference instant (timezone-aware)
        delay_hours: Lead window before the booking; None means hold immediately

    Returns:
        True when no delay is configured or the booking starts within the window
    """
    if delay_hours is None:
        return True
    return scheduled_at - now <= timedelta(hours=delay_hours)


def hold_window_end(now: datetime, delay_hours: int) -> datetime:
    """Latest start time a booking may have to be swept into a hold at `now`."""

    return now + timedelta(hours=delay_hours)
