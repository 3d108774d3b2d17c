# backend/slotwise/repositories/availability_repository.py
"""
Availability Repository for Slotwise

Data access for weekly availability rules and blocked periods. Rules are
returned in calendar order (Monday first, then by start time) so callers
never depend on alphabetical day ordering.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityRule, BlockedSlot, DayOfWeek
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_DAY_ORDER = case(
    {day.value: day.index for day in DayOfWeek},
    value=AvailabilityRule.day_of_week,
    else_=7,
)


class AvailabilityRuleRepository(BaseRepository[AvailabilityRule]):
    """Repository for recurring weekly rules."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilityRule)

    def list_for_provider(self, provider_id: str) -> List[AvailabilityRule]:
        try:
            return (
                self._build_query()
                .filter(AvailabilityRule.provider_id == provider_id)
                .order_by(_DAY_ORDER, AvailabilityRule.start_time.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing rules for provider {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to list availability rules: {str(e)}")

    def list_for_day(self, provider_id: str, day: DayOfWeek) -> List[AvailabilityRule]:
        """Rules applying to one weekday, ordered by start time."""
        try:
            return (
                self._build_query()
                .filter(
                    AvailabilityRule.provider_id == provider_id,
                    AvailabilityRule.day_of_week == day.value,
                )
                .order_by(AvailabilityRule.start_time.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing {day.value} rules for {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to list availability rules: {str(e)}")

    def get_owned(self, rule_id: str, provider_id: str) -> Optional[AvailabilityRule]:
        return self.find_one_by(id=rule_id, provider_id=provider_id)


class BlockedSlotRepository(BaseRepository[BlockedSlot]):
    """Repository for absolute blocked periods."""

    def __init__(self, db: Session):
        super().__init__(db, BlockedSlot)

    def list_for_provider(
        self,
        provider_id: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> List[BlockedSlot]:
        """
        Blocked periods of a provider, optionally limited to those overlapping
        the half-open window ``[window_start, window_end)``.
        """
        try:
            query = self._build_query().filter(BlockedSlot.provider_id == provider_id)
            if window_end is not None:
                query = query.filter(BlockedSlot.start_time < window_end)
            if window_start is not None:
                query = query.filter(BlockedSlot.end_time > window_start)
            return query.order_by(BlockedSlot.start_time.asc()).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing blocked slots for {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to list blocked slots: {str(e)}")

    def get_owned(self, blocked_id: str, provider_id: str) -> Optional[BlockedSlot]:
        return self.find_one_by(id=blocked_id, provider_id=provider_id)
