# backend/slotwise/services/availability_service.py
"""
Availability Service for Slotwise

Owns a provider's weekly rules and blocked periods, and answers the public
slot query. Every successful mutation commits and then invalidates the
provider's slot cache before returning, so the next read cannot serve a
window that was just blocked.
"""

from datetime import date, datetime, time, timezone
import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import get_provider_timezone, local_day_bounds_utc
from ..models.availability import AvailabilityRule, BlockedSlot, BlockRecurrence, DayOfWeek
from ..models.provider import Provider
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleUpdate,
    BlockedSlotCreate,
    TimeSlot,
)
from ..utils.time_utils import TimeRange, ensure_utc
from . import slot_generator
from .base import BaseService
from .slot_cache import SlotCache

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

MIN_QUERY_DURATION = 15
MAX_QUERY_DURATION = 480


def validate_rule_window(
    start_time: time,
    end_time: time,
    break_start: Optional[time],
    break_end: Optional[time],
) -> None:
    """
    Cross-field rule invariants.

    Raises:
        ValidationException: end not after start, or a malformed break
    """
    if end_time <= start_time:
        raise ValidationException("End time must be after start time", code="INVALID_TIME_RANGE")

    if (break_start is None) != (break_end is None):
        raise ValidationException(
            "Break start and end must both be provided", code="INVALID_BREAK"
        )

    if break_start is not None and break_end is not None:
        if break_end <= break_start:
            raise ValidationException(
                "Break end time must be after break start time", code="INVALID_BREAK"
            )
        if break_start < start_time or break_end > end_time:
            raise ValidationException(
                "Break times must be within availability window", code="INVALID_BREAK"
            )


class AvailabilityService(BaseService):
    """Rule store and public slot query."""

    def __init__(self, db: Session, cache_service: Optional["CacheService"] = None):
        super().__init__(db, cache=cache_service)
        self.slot_cache = SlotCache(cache_service) if cache_service is not None else None

        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.service_repository = RepositoryFactory.create_service_repository(db)
        self.rule_repository = RepositoryFactory.create_availability_rule_repository(db)
        self.blocked_slot_repository = RepositoryFactory.create_blocked_slot_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    # Helpers

    def _get_provider(self, provider_id: str) -> Provider:
        provider = self.provider_repository.get_by_id(provider_id)
        if not provider:
            raise NotFoundException("Service provider not found")
        return provider

    def _invalidate_provider(self, provider: Provider) -> None:
        if self.slot_cache is not None:
            self.slot_cache.invalidate_all(provider.slug)

    # Availability rules

    def list_rules(self, provider_id: str) -> List[AvailabilityRule]:
        """Rules ordered Monday to Sunday, then by start time."""
        return self.rule_repository.list_for_provider(provider_id)

    def get_rule(self, provider_id: str, rule_id: str) -> AvailabilityRule:
        rule = self.rule_repository.get_owned(rule_id, provider_id)
        if not rule:
            raise NotFoundException("Availability rule not found")
        return rule

    @BaseService.measure_operation("create_rule")
    def create_rule(self, provider_id: str, data: AvailabilityRuleCreate) -> AvailabilityRule:
        validate_rule_window(data.start_time, data.end_time, data.break_start, data.break_end)
        provider = self._get_provider(provider_id)

        with self.transaction():
            rule = self.rule_repository.create(
                provider_id=provider.id,
                day_of_week=DayOfWeek(data.day_of_week).value,
                start_time=data.start_time,
                end_time=data.end_time,
                break_start=data.break_start,
                break_end=data.break_end,
                slot_duration=data.slot_duration,
            )

        self._invalidate_provider(provider)
        self.log_operation(
            "create_rule", provider_id=provider.id, rule_id=rule.id, day=rule.day_of_week
        )
        return rule

    @BaseService.measure_operation("update_rule")
    def update_rule(
        self, provider_id: str, rule_id: str, data: AvailabilityRuleUpdate
    ) -> AvailabilityRule:
        """Apply a partial update; the merged rule must satisfy every invariant."""
        rule = self.get_rule(provider_id, rule_id)
        changes = data.model_dump(exclude_unset=True)

        merged = {
            "start_time": changes.get("start_time", rule.start_time),
            "end_time": changes.get("end_time", rule.end_time),
            "break_start": changes.get("break_start", rule.break_start),
            "break_end": changes.get("break_end", rule.break_end),
        }
        validate_rule_window(**merged)

        # Required columns ignore explicit nulls; breaks may be cleared
        for field in ("day_of_week", "start_time", "end_time", "slot_duration"):
            if field in changes and changes[field] is None:
                del changes[field]
        if "day_of_week" in changes:
            changes["day_of_week"] = DayOfWeek(changes["day_of_week"]).value

        provider = self._get_provider(provider_id)
        with self.transaction():
            for field, value in changes.items():
                setattr(rule, field, value)
            self.rule_repository.flush()

        self._invalidate_provider(provider)
        self.log_operation("update_rule", provider_id=provider_id, rule_id=rule_id)
        return rule

    @BaseService.measure_operation("delete_rule")
    def delete_rule(self, provider_id: str, rule_id: str) -> None:
        rule = self.get_rule(provider_id, rule_id)
        provider = self._get_provider(provider_id)

        with self.transaction():
            self.rule_repository.delete(rule.id)

        self._invalidate_provider(provider)
        self.log_operation("delete_rule", provider_id=provider_id, rule_id=rule_id)

    # Blocked periods

    def list_blocked_slots(
        self,
        provider_id: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> List[BlockedSlot]:
        return self.blocked_slot_repository.list_for_provider(
            provider_id,
            window_start=ensure_utc(window_start) if window_start else None,
            window_end=ensure_utc(window_end) if window_end else None,
        )

    @BaseService.measure_operation("create_blocked_slot")
    def create_blocked_slot(self, provider_id: str, data: BlockedSlotCreate) -> BlockedSlot:
        start = ensure_utc(data.start_time)
        end = ensure_utc(data.end_time)
        if end <= start:
            raise ValidationException("End time must be after start time", code="INVALID_TIME_RANGE")

        provider = self._get_provider(provider_id)
        with self.transaction():
            blocked = self.blocked_slot_repository.create(
                provider_id=provider.id,
                start_time=start,
                end_time=end,
                reason=data.reason,
                recurrence=BlockRecurrence(data.recurrence).value,
            )

        self._invalidate_provider(provider)
        self.log_operation(
            "create_blocked_slot",
            provider_id=provider.id,
            blocked_slot_id=blocked.id,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        return blocked

    @BaseService.measure_operation("delete_blocked_slot")
    def delete_blocked_slot(self, provider_id: str, blocked_slot_id: str) -> None:
        blocked = self.blocked_slot_repository.get_owned(blocked_slot_id, provider_id)
        if not blocked:
            raise NotFoundException("Blocked slot not found")
        provider = self._get_provider(provider_id)

        with self.transaction():
            self.blocked_slot_repository.delete(blocked.id)

        self._invalidate_provider(provider)
        self.log_operation(
            "delete_blocked_slot", provider_id=provider_id, blocked_slot_id=blocked_slot_id
        )

    # Public slot query

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        provider_slug: str,
        target_date: date,
        duration: int,
        now: Optional[datetime] = None,
    ) -> List[TimeSlot]:
        """
        Ordered slots of ``target_date`` (provider timezone) for a service of ``duration`` minutes.

        Served from the slot cache when possible; otherwise generated from live
        rules, occupying bookings and blocked periods and written back.
        """
        if not MIN_QUERY_DURATION <= duration <= MAX_QUERY_DURATION:
            raise ValidationException(
                f"Duration must be between {MIN_QUERY_DURATION} and {MAX_QUERY_DURATION} minutes",
                code="INVALID_DURATION",
            )

        provider = self.provider_repository.get_by_slug(provider_slug)
        if not provider:
            raise NotFoundException("Service provider not found")

        if self.slot_cache is not None:
            cached = self.slot_cache.get(provider.slug, target_date, duration)
            if cached is not None:
                return cached

        rules = self.rule_repository.list_for_day(
            provider.id, DayOfWeek.from_weekday(target_date.weekday())
        )
        if not rules:
            return []

        tz = get_provider_timezone(provider)
        day_start, day_end = local_day_bounds_utc(target_date, tz)
        bookings = self.booking_repository.find_overlapping_bookings(
            provider.id, day_start, day_end, settings.occupying_booking_statuses()
        )
        blocked = self.blocked_slot_repository.list_for_provider(
            provider.id, window_start=day_start, window_end=day_end
        )

        slots = slot_generator.generate_for_rules(
            target_date,
            rules,
            duration,
            [TimeRange(b.booking_date, b.booking_end) for b in bookings],
            [TimeRange(b.start_time, b.end_time) for b in blocked],
            now or datetime.now(timezone.utc),
            tz,
        )

        if self.slot_cache is not None:
            self.slot_cache.put(provider.slug, target_date, duration, slots)
        return slots

    def get_available_slots_for_service(
        self,
        provider_slug: str,
        service_id: str,
        target_date: date,
        now: Optional[datetime] = None,
    ) -> List[TimeSlot]:
        """Slot query using the duration of one of the provider's active services."""
        provider = self.provider_repository.get_by_slug(provider_slug)
        if not provider:
            raise NotFoundException("Service provider not found")
        service = self.service_repository.get_for_provider(service_id, provider.id)
        if not service or not service.is_active:
            raise NotFoundException("Service not found")
        return self.get_available_slots(provider_slug, target_date, int(service.duration), now)
