# backend/app/tasks/celery_app.py
"""
Celery application for CleanOps background work.

Redis is both broker and result backend. The beat schedule and the
payments queue routing are attached here so workers and beat share one
configuration.
"""

import logging
import os
from typing import Any, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from app.core.config import settings

logger = logging.getLogger(__name__)

TASK_MODULES = ("app.tasks.payment_tasks",)


def _broker_url() -> str:
    """CELERY_BROKER_URL, then REDIS_URL, then settings; always with a db index."""
    url = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or settings.redis_url
    if not any(url.endswith(f"/{index}") for index in range(16)):
        url = f"{url}/0"
    return url


def create_celery_app() -> Celery:
    broker_url = _broker_url()
    app = Celery(
        "cleanops",
        broker=broker_url,
        backend=os.getenv("CELERY_RESULT_BACKEND") or broker_url,
    )

    app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": settings.business_timezone,
            "enable_utc": True,
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            "worker_hijack_root_logger": False,
            "task_soft_time_limit": 300,
            "task_time_limit": 600,
            # A sweep interrupted by a worker crash is redelivered
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
            "broker_transport_options": {"visibility_timeout": 3600},
            "task_always_eager": settings.is_testing,
            "task_eager_propagates": settings.is_testing,
        }
    )
    app.conf.imports = TASK_MODULES
    app.conf.task_routes = {"app.tasks.payment_tasks.*": {"queue": "payments"}}

    from app.tasks.beat_schedule import get_beat_schedule

    app.conf.beat_schedule = get_beat_schedule(settings.environment)
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Use the application's log format instead of Celery's."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Logs task failures and retries with the task id attached."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name, "task_kwargs": str(kwargs)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries}: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "retry_count": self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)
