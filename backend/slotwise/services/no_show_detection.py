# backend/slotwise/services/no_show_detection.py
"""
Automatic no-show detection.

Confirmed bookings whose start lies more than the grace period in the past
are marked as no-shows by the periodic sweep. Each booking is processed in
its own transaction so one failure never blocks the rest of the sweep.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import time
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DomainException, RepositoryException
from ..models.booking import Booking
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import NoShowSweepResponse
from ..utils.time_utils import ensure_utc
from .base import BaseService
from .booking_service import BookingService

logger = logging.getLogger(__name__)


@dataclass
class NoShowSweepSummary:
    total_found: int = 0
    total_processed: int = 0
    total_failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_response(self) -> NoShowSweepResponse:
        return NoShowSweepResponse(
            total_found=self.total_found,
            total_processed=self.total_processed,
            total_failed=self.total_failed,
            errors=list(self.errors),
        )


class NoShowDetectionService(BaseService):
    """Finds and marks bookings whose customers never turned up."""

    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        grace_period_hours: Optional[int] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.booking_service = booking_service or BookingService(db)
        self.grace_period_hours = (
            settings.no_show_grace_period_hours if grace_period_hours is None else grace_period_hours
        )

    @property
    def automatic_reason(self) -> str:
        return f"Automatically detected no-show ({self.grace_period_hours}h grace period exceeded)"

    def find_candidates(self, now: Optional[datetime] = None) -> List[Booking]:
        """Confirmed bookings that started more than the grace period before ``now``."""
        now = ensure_utc(now or datetime.now(timezone.utc))
        cutoff = now - timedelta(hours=self.grace_period_hours)
        candidates = self.booking_repository.get_no_show_candidates(cutoff)
        self.logger.info(
            f"Found {len(candidates)} potential no-show bookings (cutoff {cutoff.isoformat()})"
        )
        return candidates

    @BaseService.measure_operation("process_no_shows")
    def process_no_shows(self, now: Optional[datetime] = None) -> NoShowSweepSummary:
        now = ensure_utc(now or datetime.now(timezone.utc))
        started = time.monotonic()

        candidates = self.find_candidates(now)
        summary = NoShowSweepSummary(total_found=len(candidates))
        # Ids first: a failed transition rolls back and expires loaded rows
        candidate_ids = [booking.id for booking in candidates]

        for booking_id in candidate_ids:
            try:
                self.booking_service.mark_no_show(
                    booking_id, now=now, reason=self.automatic_reason
                )
                summary.total_processed += 1
            except (DomainException, RepositoryException) as e:
                summary.total_failed += 1
                message = getattr(e, "message", None) or str(e)
                summary.errors.append({"booking_id": booking_id, "error": message})
                self.logger.error(f"Failed to process no-show for booking {booking_id}: {message}")

        self.log_operation(
            "process_no_shows",
            total_found=summary.total_found,
            total_processed=summary.total_processed,
            total_failed=summary.total_failed,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return summary

    def get_statistics(
        self,
        provider_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, float]:
        """No-show count, total fees and average fee of a provider."""
        stats = self.booking_repository.get_no_show_statistics(
            provider_id,
            date_from=ensure_utc(date_from) if date_from else None,
            date_to=ensure_utc(date_to) if date_to else None,
        )
        total = stats["total_no_shows"]
        fees = stats["total_fees_charged"]
        return {
            "total_no_shows": total,
            "total_fees_charged": fees,
            "average_fee": round(fees / total) if total else 0,
        }
