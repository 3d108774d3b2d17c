# backend/slotwise/schemas/availability.py
"""
Availability schemas for Slotwise.

Rule payloads only enforce field-level ranges here; the cross-field window
invariants (end after start, break inside the window) are enforced by
AvailabilityService so that updates are validated against the merged rule.
"""

import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from ..models.availability import BlockRecurrence, DayOfWeek
from ._strict_base import StandardizedModel, StrictModel, StrictRequestModel

TimeType = datetime.time
DateTimeType = datetime.datetime


def _truncate_to_minute(value: Optional[TimeType]) -> Optional[TimeType]:
    if value is None:
        return None
    return value.replace(second=0, microsecond=0, tzinfo=None)


class AvailabilityRuleCreate(StrictRequestModel):
    """Schema for creating a weekly availability rule."""

    day_of_week: DayOfWeek
    start_time: TimeType
    end_time: TimeType
    break_start: Optional[TimeType] = None
    break_end: Optional[TimeType] = None
    slot_duration: int = Field(default=60, ge=15, le=240)

    @field_validator("start_time", "end_time", "break_start", "break_end")
    @classmethod
    def minute_precision(cls, v: Optional[TimeType]) -> Optional[TimeType]:
        """Rules are wall-clock times with minute precision."""
        return _truncate_to_minute(v)


class AvailabilityRuleUpdate(StrictRequestModel):
    """Partial update of an availability rule; unset fields keep their values."""

    day_of_week: Optional[DayOfWeek] = None
    start_time: Optional[TimeType] = None
    end_time: Optional[TimeType] = None
    break_start: Optional[TimeType] = None
    break_end: Optional[TimeType] = None
    slot_duration: Optional[int] = Field(default=None, ge=15, le=240)

    @field_validator("start_time", "end_time", "break_start", "break_end")
    @classmethod
    def minute_precision(cls, v: Optional[TimeType]) -> Optional[TimeType]:
        return _truncate_to_minute(v)


class AvailabilityRuleResponse(StandardizedModel):
    id: str
    provider_id: str
    day_of_week: DayOfWeek
    start_time: TimeType
    end_time: TimeType
    break_start: Optional[TimeType] = None
    break_end: Optional[TimeType] = None
    slot_duration: int


class BlockedSlotCreate(StrictRequestModel):
    """Schema for blocking an absolute period."""

    start_time: DateTimeType
    end_time: DateTimeType
    reason: Optional[str] = Field(None, max_length=500)
    recurrence: BlockRecurrence = BlockRecurrence.NONE

    @field_validator("start_time", "end_time")
    @classmethod
    def require_timezone(cls, v: DateTimeType) -> DateTimeType:
        """Blocked periods are absolute instants; naive values are rejected."""
        if v.tzinfo is None:
            raise ValueError("Blocked slot times must include a timezone offset")
        return v.astimezone(datetime.timezone.utc)

    @field_validator("end_time")
    @classmethod
    def validate_time_order(cls, v: DateTimeType, info: Any) -> DateTimeType:
        """Ensure end time is after start time."""
        if (
            isinstance(getattr(info, "data", None), dict)
            and info.data.get("start_time")
            and v <= info.data["start_time"]
        ):
            raise ValueError("End time must be after start time")
        return v


class BlockedSlotResponse(StandardizedModel):
    id: str
    provider_id: str
    start_time: DateTimeType
    end_time: DateTimeType
    reason: Optional[str] = None
    recurrence: BlockRecurrence


class TimeSlot(StrictModel):
    """
    Derived candidate slot.

    ``start``/``end`` are ISO-8601 UTC instants so cached and freshly generated
    sequences serialize identically.
    """

    start: str
    end: str
    available: bool
