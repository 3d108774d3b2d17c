# backend/slotwise/models/availability.py
"""
Availability models for Slotwise.

AvailabilityRule describes a provider's recurring weekly working window
(wall-clock times in the provider's timezone, with an optional break).
BlockedSlot is an absolute UTC interval the provider is unavailable, such as
a holiday or a job running long. Slots themselves are never stored; they are
derived on demand from these records.
"""

from datetime import datetime, time, timezone
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class DayOfWeek(str, Enum):
    """Weekday names, declared in calendar order (Monday first)."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def index(self) -> int:
        """0 for Monday through 6 for Sunday, matching ``date.weekday()``."""
        return list(DayOfWeek).index(self)

    @classmethod
    def from_weekday(cls, weekday: int) -> "DayOfWeek":
        return list(cls)[weekday]


class BlockRecurrence(str, Enum):
    """Recurrence label stored on blocked slots."""

    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AvailabilityRule(Base):
    """Recurring weekly availability window for a provider."""

    __tablename__ = "availability_rules"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(
        String(26), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = Column(String(10), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    break_start = Column(Time, nullable=True)
    break_end = Column(Time, nullable=True)
    slot_duration = Column(Integer, nullable=False, default=60)

    created_at = Column(UTCDateTime(), nullable=False, default=_now_utc)
    updated_at = Column(UTCDateTime(), nullable=False, default=_now_utc, onupdate=_now_utc)

    provider = relationship("Provider", back_populates="availability_rules")

    __table_args__ = (
        CheckConstraint(
            "day_of_week IN ('monday', 'tuesday', 'wednesday', 'thursday', "
            "'friday', 'saturday', 'sunday')",
            name="ck_availability_rules_day",
        ),
        CheckConstraint(
            "slot_duration >= 15 AND slot_duration <= 240",
            name="ck_availability_rules_slot_duration",
        ),
        Index("ix_availability_rules_provider_day", "provider_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityRule {self.id}: provider={self.provider_id}, "
            f"{self.day_of_week} {self.start_time}-{self.end_time}>"
        )

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "day_of_week": self.day_of_week,
            "start_time": _fmt_time(self.start_time),
            "end_time": _fmt_time(self.end_time),
            "break_start": _fmt_time(self.break_start),
            "break_end": _fmt_time(self.break_end),
            "slot_duration": self.slot_duration,
        }


class BlockedSlot(Base):
    """
    Absolute interval during which the provider cannot be booked.

    ``recurrence`` is kept as a label only: a weekly or monthly block still
    blocks exactly the stored interval.
    """

    __tablename__ = "blocked_slots"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(
        String(26), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)
    reason = Column(Text, nullable=True)
    recurrence = Column(String(10), nullable=False, default=BlockRecurrence.NONE.value)

    created_at = Column(UTCDateTime(), nullable=False, default=_now_utc)

    provider = relationship("Provider", back_populates="blocked_slots")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_blocked_slots_time_order"),
        CheckConstraint(
            "recurrence IN ('none', 'weekly', 'monthly')", name="ck_blocked_slots_recurrence"
        ),
        Index("ix_blocked_slots_provider_window", "provider_id", "start_time", "end_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<BlockedSlot {self.id}: provider={self.provider_id}, "
            f"{self.start_time}-{self.end_time}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "reason": self.reason,
            "recurrence": self.recurrence,
        }


def _fmt_time(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None
