# backend/slotwise/repositories/booking_repository.py
"""
Booking Repository for Slotwise

Explicit query functions for every booking access pattern the engine uses:
- overlap lookups for admission and slot generation
- lookups by payment intent for payment-boundary signals
- provider listings and no-show candidates
- no-show statistics
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def create(self, **kwargs: Any) -> Booking:
        """Create a booking, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    # Time-window queries

    def find_overlapping_bookings(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        statuses: Iterable[str],
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Bookings of ``provider_id`` in one of ``statuses`` whose window
        overlaps the half-open range ``[start, end)``.
        """
        try:
            query = self._build_query().filter(
                Booking.provider_id == provider_id,
                Booking.status.in_(list(statuses)),
                Booking.booking_date < end,
                Booking.booking_end > start,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return query.order_by(Booking.booking_date.asc()).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding overlapping bookings for {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to find overlapping bookings: {str(e)}")

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        return self.find_one_by(payment_intent_id=payment_intent_id)

    def get_for_provider(self, booking_id: str, provider_id: str) -> Optional[Booking]:
        return self.find_one_by(id=booking_id, provider_id=provider_id)

    def list_for_provider(
        self,
        provider_id: str,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 200,
    ) -> List[Booking]:
        """Provider bookings ordered by start, optionally filtered by status and start range."""
        try:
            query = self._build_query().filter(Booking.provider_id == provider_id)
            if status:
                query = query.filter(Booking.status == status)
            if date_from is not None:
                query = query.filter(Booking.booking_date >= date_from)
            if date_to is not None:
                query = query.filter(Booking.booking_date < date_to)
            return query.order_by(Booking.booking_date.asc()).limit(limit).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing bookings for provider {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}")

    # No-show support

    def get_no_show_candidates(self, cutoff: datetime, limit: int = 500) -> List[Booking]:
        """Confirmed bookings that started before ``cutoff``."""
        try:
            return (
                self._build_query()
                .filter(
                    Booking.status == BookingStatus.CONFIRMED.value,
                    Booking.booking_date < cutoff,
                )
                .order_by(Booking.booking_date.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding no-show candidates: {str(e)}")
            raise RepositoryException(f"Failed to find no-show candidates: {str(e)}")

    def get_no_show_statistics(
        self,
        provider_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Count and total fee of no-show bookings for a provider."""
        try:
            query = self.db.query(
                func.count(Booking.id), func.coalesce(func.sum(Booking.fee_charged), 0)
            ).filter(
                Booking.provider_id == provider_id,
                Booking.status == BookingStatus.NO_SHOW.value,
            )
            if date_from is not None:
                query = query.filter(Booking.booking_date >= date_from)
            if date_to is not None:
                query = query.filter(Booking.booking_date < date_to)
            total, fees = query.one()
            return {"total_no_shows": int(total or 0), "total_fees_charged": int(fees or 0)}
        except SQLAlchemyError as e:
            self.logger.error(f"Error computing no-show statistics for {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to compute no-show statistics: {str(e)}")
