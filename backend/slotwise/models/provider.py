# backend/slotwise/models/provider.py
"""
Provider model.

A provider publishes weekly availability, blocks ad-hoc periods and offers
bookable services. The public ``slug`` identifies the provider on booking
pages and keys the slot cache; ``timezone`` anchors wall-clock rules.
"""

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
import ulid

from ..core.config import settings
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Provider(Base):
    """Service provider owning availability, services and bookings."""

    __tablename__ = "providers"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    timezone = Column(String(64), nullable=False, default=lambda: settings.default_timezone)

    created_at = Column(UTCDateTime(), nullable=False, default=_now_utc)
    updated_at = Column(UTCDateTime(), nullable=False, default=_now_utc, onupdate=_now_utc)

    availability_rules = relationship(
        "AvailabilityRule",
        back_populates="provider",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    blocked_slots = relationship(
        "BlockedSlot",
        back_populates="provider",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    services = relationship("Service", back_populates="provider")

    def __repr__(self) -> str:
        return f"<Provider {self.id}: slug={self.slug}, tz={self.timezone}>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "slug": self.slug,
            "timezone": self.timezone,
        }
