# backend/app/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for CleanOps.

The payment hold sweep runs on a fixed interval; every run re-reads the
configured lead window, so changing it needs no schedule change.
"""

from typing import Any

from celery.schedules import crontab

from app.core.config import settings

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Place payment holds on bookings entering the hold window
    "sweep-payment-holds": {
        "task": "app.tasks.payment_tasks.sweep_payment_holds",
        "schedule": crontab(minute=f"*/{settings.hold_sweep_interval_minutes}"),
        "kwargs": {},
        "options": {
            "queue": "payments",
            "priority": 9,  # High priority - critical for payment processing
        },
    },
}

# Environment-specific overrides
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "sweep-payment-holds": {
            **CELERYBEAT_SCHEDULE["sweep-payment-holds"],
            "options": {"queue": "celery", "priority": 9},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
