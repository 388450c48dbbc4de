"""
Celery tasks for payment holds.

The sweep finds bookings that entered the configured hold window and places
a manual-capture authorization on each. It runs from Celery beat and is also
enqueued when an admin changes the window.
"""

from datetime import datetime, timezone
import logging
from typing import (
    Any,
    Callable,
    List,
    Optional,
    ParamSpec,
    Protocol,
    TypedDict,
    TypeVar,
    cast,
)

from celery.result import AsyncResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import RepositoryException, ServiceException
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.services.payment_hold_service import PaymentHoldService
from app.tasks.celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class SweepJobResults(TypedDict):
    processed: int
    success: int
    failed: int
    skipped: int
    errors: List[str]
    delay_hours: Optional[int]
    message: Optional[str]
    processed_at: str


logger = logging.getLogger(__name__)


@typed_task(bind=True, max_retries=3, name="app.tasks.payment_tasks.sweep_payment_holds")
def sweep_payment_holds(self: Any, override_delay_hours: Optional[int] = None) -> SweepJobResults:
    """
    Place payment holds on bookings that entered the hold window.

    Runs every 30 minutes from beat. Per-booking failures are reported in the
    result; only failures to read the configuration or candidates retry.

    Args:
        override_delay_hours: Window to use instead of the configured one

    Returns:
        Dict with processed/success/failed counts and error messages
    """
    from app.database import SessionLocal

    db: Session = SessionLocal()
    try:
        result = PaymentHoldService(db).sweep(override_delay_hours)
        summary = result.to_dict()
        if result.failed:
            logger.warning(f"Payment hold sweep had {result.failed} failures: {result.errors}")
        return {
            "processed": summary["processed"],
            "success": summary["success"],
            "failed": summary["failed"],
            "skipped": summary["skipped"],
            "errors": summary["errors"],
            "delay_hours": summary["delay_hours"],
            "message": summary["message"],
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    except (SQLAlchemyError, RepositoryException, ServiceException) as exc:
        logger.error(f"Payment hold sweep failed: {exc}")
        prometheus_metrics.inc_hold_sweep_run("error")
        raise self.retry(exc=exc, countdown=300)  # Retry in 5 minutes
    finally:
        db.close()
