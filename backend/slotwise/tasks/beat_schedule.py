# backend/slotwise/tasks/beat_schedule.py
"""
Celery Beat schedule for Slotwise.

The no-show sweep runs on the configured interval; the outbox dispatcher
polls every minute for events that are due.
"""

from datetime import timedelta
from typing import Any

from celery.schedules import crontab

from slotwise.core.config import settings


def get_beat_schedule() -> dict[str, dict[str, Any]]:
    """
    Returns:
        Mapping of schedule entry name to Celery beat configuration dict
    """
    return {
        "detect-no-shows": {
            "task": "bookings.detect_no_shows",
            "schedule": timedelta(minutes=settings.no_show_sweep_interval_minutes),
            "options": {"queue": "bookings", "priority": 5},
        },
        "dispatch-notification-outbox": {
            "task": "outbox.dispatch_pending",
            "schedule": crontab(minute="*"),
            "options": {"queue": "notifications", "priority": 7},
        },
    }
