# backend/app/tasks/__init__.py
"""
Celery tasks package for CleanOps.

Run the worker with: celery -A app.tasks worker -Q payments,celery
"""

from app.tasks.celery_app import BaseTask, celery_app
from app.tasks.payment_tasks import sweep_payment_holds

__all__ = [
    "celery_app",
    "BaseTask",
    "sweep_payment_holds",
]
