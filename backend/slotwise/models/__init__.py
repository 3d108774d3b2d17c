"""
Database models for Slotwise.

This module exports all SQLAlchemy models used in the engine:
- Providers and their bookable services
- Availability rules and blocked slots
- Bookings and their lifecycle enums
- Notification event outbox
"""

from .availability import AvailabilityRule, BlockedSlot, BlockRecurrence, DayOfWeek
from .booking import (
    ALLOWED_TRANSITIONS,
    Booking,
    BookingAction,
    BookingStatus,
    CancelledBy,
    DepositStatus,
    DisputeStatus,
)
from .event_outbox import EventOutbox, EventOutboxStatus
from .provider import Provider
from .service import DepositType, Service

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AvailabilityRule",
    "BlockRecurrence",
    "BlockedSlot",
    "Booking",
    "BookingAction",
    "BookingStatus",
    "CancelledBy",
    "DayOfWeek",
    "DepositStatus",
    "DepositType",
    "DisputeStatus",
    "EventOutbox",
    "EventOutboxStatus",
    "Provider",
    "Service",
]
