# backend/slotwise/services/conflict_checker.py
"""
Conflict Checker for Slotwise

Answers "is this exact window still free" against live data at booking
time. The cached slot view is advisory only; this check is the friendly
fast-fail in front of the storage exclusion constraint, which remains the
correctness guarantee under concurrency.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..repositories.factory import RepositoryFactory
from ..utils.time_utils import ensure_utc
from .base import BaseService

logger = logging.getLogger(__name__)


class ConflictChecker(BaseService):
    """Live overlap checks against bookings and blocked periods."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.blocked_slot_repository = RepositoryFactory.create_blocked_slot_repository(db)

    @BaseService.measure_operation("find_conflicts")
    def find_conflicts(
        self,
        provider_id: str,
        proposed_start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Describe everything overlapping ``[proposed_start, proposed_start + duration)``.

        Returns:
            Dict with ``bookings`` and ``blocked_slots`` lists
        """
        start = ensure_utc(proposed_start)
        end = start + timedelta(minutes=duration_minutes)

        bookings = self.booking_repository.find_overlapping_bookings(
            provider_id,
            start,
            end,
            settings.occupying_booking_statuses(),
            exclude_booking_id=exclude_booking_id,
        )
        blocked = self.blocked_slot_repository.list_for_provider(
            provider_id, window_start=start, window_end=end
        )

        return {
            "bookings": [
                {
                    "booking_id": booking.id,
                    "start": booking.booking_date.isoformat(),
                    "end": booking.booking_end.isoformat(),
                    "status": booking.status,
                }
                for booking in bookings
            ],
            "blocked_slots": [
                {
                    "blocked_slot_id": block.id,
                    "start": block.start_time.isoformat(),
                    "end": block.end_time.isoformat(),
                    "reason": block.reason,
                }
                for block in blocked
            ],
        }

    def is_free(
        self,
        provider_id: str,
        proposed_start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        conflicts = self.find_conflicts(
            provider_id, proposed_start, duration_minutes, exclude_booking_id
        )
        free = not conflicts["bookings"] and not conflicts["blocked_slots"]
        if not free:
            self.logger.info(
                f"Window {proposed_start.isoformat()} (+{duration_minutes}m) for provider "
                f"{provider_id} is taken: {len(conflicts['bookings'])} bookings, "
                f"{len(conflicts['blocked_slots'])} blocks"
            )
        return free
