# backend/slotwise/schemas/__init__.py
"""
Pydantic schemas for Slotwise.
"""

from .availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    AvailabilityRuleUpdate,
    BlockedSlotCreate,
    BlockedSlotResponse,
    TimeSlot,
)
from .booking import (
    BookingCancelRequest,
    BookingCreate,
    BookingResponse,
    DisputeCreate,
    DisputeResolution,
    NoShowSweepResponse,
)

__all__ = [
    "AvailabilityRuleCreate",
    "AvailabilityRuleResponse",
    "AvailabilityRuleUpdate",
    "BlockedSlotCreate",
    "BlockedSlotResponse",
    "BookingCancelRequest",
    "BookingCreate",
    "BookingResponse",
    "DisputeCreate",
    "DisputeResolution",
    "NoShowSweepResponse",
    "TimeSlot",
]
