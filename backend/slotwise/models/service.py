# backend/slotwise/models/service.py
"""
Bookable service offered by a provider.

A service fixes the slot length and the deposit, and carries the
cancellation policy that is copied into every booking's policy snapshot.
Editing a service never affects bookings already made against it.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class DepositType(str, Enum):
    """How the deposit amount is interpreted."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"


class Service(Base):
    """A provider's bookable offering with its deposit and cancellation policy."""

    __tablename__ = "services"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(
        String(26), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False, comment="Minutes")

    # Deposit configuration
    deposit_amount = Column(
        Integer, nullable=False, comment="Cents, or a percentage when deposit_type=percentage"
    )
    deposit_type = Column(String(20), nullable=False, default=DepositType.FIXED.value)
    full_price = Column(Integer, nullable=True, comment="Cents")
    is_active = Column(Boolean, nullable=False, default=True)

    # Cancellation policy
    cancellation_window_hours = Column(Integer, nullable=False, default=24)
    minimum_cancellation_hours = Column(Integer, nullable=False, default=2)
    late_cancellation_fee = Column(Integer, nullable=True, comment="Cents")
    no_show_fee = Column(Integer, nullable=True, comment="Cents")
    allow_partial_refunds = Column(Boolean, nullable=False, default=True)
    auto_refund_on_cancel = Column(Boolean, nullable=False, default=True)

    # Flex pass (cancellation protection)
    flex_pass_enabled = Column(Boolean, nullable=False, default=False)
    flex_pass_price = Column(Integer, nullable=True, comment="Cents")
    flex_pass_revenue_share_percent = Column(Integer, nullable=False, default=60)
    flex_pass_rules = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )
    protection_addons = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )

    created_at = Column(UTCDateTime(), nullable=False, default=_now_utc)
    updated_at = Column(UTCDateTime(), nullable=False, default=_now_utc, onupdate=_now_utc)

    provider = relationship("Provider", back_populates="services")

    __table_args__ = (
        CheckConstraint("duration >= 15 AND duration <= 480", name="ck_services_duration"),
        CheckConstraint("deposit_amount > 0", name="ck_services_deposit_positive"),
        CheckConstraint(
            "deposit_type IN ('fixed', 'percentage')", name="ck_services_deposit_type"
        ),
        CheckConstraint(
            "flex_pass_revenue_share_percent >= 0 AND flex_pass_revenue_share_percent <= 100",
            name="ck_services_flex_pass_share",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Service {self.id}: provider={self.provider_id}, name={self.name}, "
            f"duration={self.duration}, active={self.is_active}>"
        )

    def resolve_deposit_amount(self) -> int:
        """
        Deposit in cents for a booking of this service.

        Percentage deposits are taken from ``full_price`` and rounded to the
        nearest cent.
        """
        if self.deposit_type == DepositType.PERCENTAGE.value:
            if not self.full_price:
                raise ValueError(f"Service {self.id} has a percentage deposit but no full price")
            return int(round(self.full_price * self.deposit_amount / 100))
        return int(self.deposit_amount)

    @property
    def offers_flex_pass(self) -> bool:
        return bool(self.flex_pass_enabled and self.flex_pass_price)

    def flex_pass_fee(self) -> Optional[int]:
        return int(self.flex_pass_price) if self.offers_flex_pass else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "deposit_amount": self.deposit_amount,
            "deposit_type": self.deposit_type,
            "full_price": self.full_price,
            "is_active": self.is_active,
            "cancellation_window_hours": self.cancellation_window_hours,
            "minimum_cancellation_hours": self.minimum_cancellation_hours,
            "late_cancellation_fee": self.late_cancellation_fee,
            "no_show_fee": self.no_show_fee,
            "allow_partial_refunds": self.allow_partial_refunds,
            "auto_refund_on_cancel": self.auto_refund_on_cancel,
            "flex_pass_enabled": self.flex_pass_enabled,
            "flex_pass_price": self.flex_pass_price,
            "flex_pass_revenue_share_percent": self.flex_pass_revenue_share_percent,
        }
