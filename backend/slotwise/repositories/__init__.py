# backend/slotwise/repositories/__init__.py
"""
Repository layer for Slotwise.

Repositories own every query; services own transactions.

Usage:
    from slotwise.repositories import RepositoryFactory

    booking_repository = RepositoryFactory.create_booking_repository(db)
    overlapping = booking_repository.find_overlapping_bookings(
        provider_id, start, end, settings.occupying_booking_statuses()
    )
"""

from .availability_repository import AvailabilityRuleRepository, BlockedSlotRepository
from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .provider_repository import ProviderRepository, ServiceRepository

__all__ = [
    "AvailabilityRuleRepository",
    "BaseRepository",
    "BlockedSlotRepository",
    "BookingRepository",
    "EventOutboxRepository",
    "IRepository",
    "ProviderRepository",
    "RepositoryFactory",
    "ServiceRepository",
]
