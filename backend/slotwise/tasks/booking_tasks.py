# backend/slotwise/tasks/booking_tasks.py
"""Periodic booking maintenance tasks."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from slotwise.database import SessionLocal
from slotwise.services.no_show_detection import NoShowDetectionService
from slotwise.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@contextmanager
def _session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@celery_app.task(name="bookings.detect_no_shows", max_retries=0, queue="bookings")
def detect_no_shows() -> Dict[str, Any]:
    """
    Mark confirmed bookings past the grace period as no-shows.

    Each booking commits on its own; the returned summary lists the failures.
    """
    with _session_scope() as session:
        summary = NoShowDetectionService(session).process_no_shows()

    logger.info(
        "No-show sweep: %s found, %s processed, %s failed",
        summary.total_found,
        summary.total_processed,
        summary.total_failed,
    )
    return summary.to_response().model_dump()
