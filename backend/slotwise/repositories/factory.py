# backend/slotwise/repositories/factory.py
"""
Repository Factory for Slotwise

Centralizes repository creation so services receive consistently
initialized repositories and tests can swap implementations.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .availability_repository import AvailabilityRuleRepository, BlockedSlotRepository
    from .booking_repository import BookingRepository
    from .event_outbox_repository import EventOutboxRepository
    from .provider_repository import ProviderRepository, ServiceRepository


class RepositoryFactory:
    """Factory for repository instances."""

    @staticmethod
    def create_provider_repository(db: Session) -> "ProviderRepository":
        from .provider_repository import ProviderRepository

        return ProviderRepository(db)

    @staticmethod
    def create_service_repository(db: Session) -> "ServiceRepository":
        from .provider_repository import ServiceRepository

        return ServiceRepository(db)

    @staticmethod
    def create_availability_rule_repository(db: Session) -> "AvailabilityRuleRepository":
        from .availability_repository import AvailabilityRuleRepository

        return AvailabilityRuleRepository(db)

    @staticmethod
    def create_blocked_slot_repository(db: Session) -> "BlockedSlotRepository":
        from .availability_repository import BlockedSlotRepository

        return BlockedSlotRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking lifecycle operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)
