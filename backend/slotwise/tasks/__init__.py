# backend/slotwise/tasks/__init__.py
"""
Celery tasks package for Slotwise.

- no-show sweep
- notification outbox dispatch and delivery
"""

from slotwise.tasks.celery_app import BaseTask, celery_app

from slotwise.tasks.booking_tasks import detect_no_shows  # noqa: E402
from slotwise.tasks.notification_tasks import deliver_event, dispatch_pending  # noqa: E402

__all__ = [
    "BaseTask",
    "celery_app",
    "deliver_event",
    "detect_no_shows",
    "dispatch_pending",
]
