# backend/slotwise/models/booking.py
"""
Booking model for Slotwise.

A booking is a deposit-backed reservation of one provider's time window
``[booking_date, booking_date + duration)``. The duration is copied from the
service at creation and the cancellation policy is copied into
``policy_snapshot`` so later service edits never change past bookings.

Bookings are never deleted; every lifecycle transition is recorded on the row.
The storage layer enforces that no two occupying bookings of the same
provider overlap (PostgreSQL exclusion constraint, SQLite triggers).
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON
import ulid

from ..core.config import settings
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAME = "bookings_no_overlap_per_provider"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting deposit capture
    CONFIRMED = "confirmed"  # Deposit paid
    COMPLETED = "completed"  # Service delivered, deposit earned
    CANCELLED = "cancelled"  # Cancelled by customer, provider or payment failure
    NO_SHOW = "no_show"  # Customer did not attend


class DepositStatus(str, Enum):
    """State of the deposit at the payment boundary."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class DisputeStatus(str, Enum):
    """Dispute overlay applied on top of a finished booking."""

    NONE = "none"
    PENDING = "pending"
    RESOLVED_CUSTOMER = "resolved_customer"
    RESOLVED_PROVIDER = "resolved_provider"


class BookingAction(str, Enum):
    """Lifecycle actions validated against ALLOWED_TRANSITIONS."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    MARK_NO_SHOW = "mark_no_show"
    COMPLETE = "complete"
    OPEN_DISPUTE = "open_dispute"


# action -> statuses it may be applied from
ALLOWED_TRANSITIONS: dict[BookingAction, frozenset[BookingStatus]] = {
    BookingAction.CONFIRM: frozenset({BookingStatus.PENDING}),
    BookingAction.CANCEL: frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
    BookingAction.MARK_NO_SHOW: frozenset({BookingStatus.CONFIRMED}),
    BookingAction.COMPLETE: frozenset({BookingStatus.CONFIRMED}),
    BookingAction.OPEN_DISPUTE: frozenset(
        {BookingStatus.CANCELLED, BookingStatus.NO_SHOW, BookingStatus.COMPLETED}
    ),
}


class CancelledBy(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    SYSTEM = "system"


class Booking(Base):
    """Deposit-backed reservation of a provider's time window."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False, index=True)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=False, index=True)

    # Customer contact
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(50), nullable=True)
    customer_address = Column(Text, nullable=True)

    # Exclusivity window
    booking_date = Column(UTCDateTime(), nullable=False, index=True)
    booking_end = Column(UTCDateTime(), nullable=False)
    duration = Column(Integer, nullable=False, comment="Minutes, copied from the service")
    notes = Column(Text, nullable=True)

    # Money (cents)
    deposit_amount = Column(Integer, nullable=False)
    refund_amount = Column(Integer, nullable=True)
    fee_charged = Column(Integer, nullable=True)
    refund_reason = Column(String(50), nullable=True)

    # Policy in effect at booking time (PolicySnapshot payload)
    policy_snapshot = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )

    # Lifecycle
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    deposit_status = Column(String(20), nullable=False, default=DepositStatus.PENDING.value)
    dispute_status = Column(String(20), nullable=False, default=DisputeStatus.NONE.value)

    # Payment boundary references
    payment_intent_id = Column(String(255), nullable=True, unique=True)
    charge_id = Column(String(255), nullable=True)

    # Flex pass (cancellation protection)
    flex_pass_purchased = Column(Boolean, nullable=False, default=False)
    flex_pass_fee = Column(Integer, nullable=True)

    # Transition metadata
    confirmed_at = Column(UTCDateTime(), nullable=True)
    cancellation_time = Column(UTCDateTime(), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(20), nullable=True)
    refund_requested_at = Column(UTCDateTime(), nullable=True)
    refunded_at = Column(UTCDateTime(), nullable=True)
    no_show_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)

    # Dispute
    dispute_reason = Column(Text, nullable=True)
    dispute_created_at = Column(UTCDateTime(), nullable=True)
    dispute_resolved_at = Column(UTCDateTime(), nullable=True)
    dispute_resolution_notes = Column(Text, nullable=True)
    dispute_resolved_by = Column(String(26), nullable=True)

    extra_metadata = Column(
        "metadata", JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )

    created_at = Column(UTCDateTime(), nullable=False, default=_now_utc)
    updated_at = Column(UTCDateTime(), nullable=False, default=_now_utc, onupdate=_now_utc)

    provider = relationship("Provider")
    service = relationship("Service")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "deposit_status IN ('pending', 'paid', 'failed', 'refunded')",
            name="ck_bookings_deposit_status",
        ),
        CheckConstraint(
            "dispute_status IN ('none', 'pending', 'resolved_customer', 'resolved_provider')",
            name="ck_bookings_dispute_status",
        ),
        CheckConstraint("duration >= 15 AND duration <= 480", name="ck_bookings_duration"),
        CheckConstraint("deposit_amount >= 100", name="ck_bookings_deposit_minimum"),
        CheckConstraint("booking_end > booking_date", name="ck_bookings_time_order"),
        Index("ix_bookings_provider_window", "provider_id", "booking_date", "booking_end"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.booking_end is None and self.booking_date is not None and self.duration:
            self.booking_end = self.booking_date + timedelta(minutes=int(self.duration))
        if not self.status:
            self.status = BookingStatus.PENDING.value
        if not self.deposit_status:
            self.deposit_status = DepositStatus.PENDING.value
        if not self.dispute_status:
            self.dispute_status = DisputeStatus.NONE.value
        logger.info(f"Creating booking with provider {self.provider_id} at {self.booking_date}")

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: provider={self.provider_id}, "
            f"start={self.booking_date}, duration={self.duration}, status={self.status}>"
        )

    def can(self, action: BookingAction) -> bool:
        """Whether ``action`` is allowed from the current status."""
        return BookingStatus(self.status) in ALLOWED_TRANSITIONS[action]

    # State mutations. Callers (BookingService) check legality first.

    def confirm(self, charge_id: Optional[str] = None, at: Optional[datetime] = None) -> None:
        self.status = BookingStatus.CONFIRMED.value
        self.deposit_status = DepositStatus.PAID.value
        self.confirmed_at = at or _now_utc()
        if charge_id:
            self.charge_id = charge_id
        logger.info(f"Booking {self.id} confirmed")

    def cancel(
        self,
        cancelled_by: CancelledBy,
        reason: Optional[str],
        refund_amount: int,
        fee_charged: int,
        refund_reason: Optional[str],
        at: Optional[datetime] = None,
    ) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancellation_time = at or _now_utc()
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by.value
        self.refund_amount = refund_amount
        self.fee_charged = fee_charged
        self.refund_reason = refund_reason
        logger.info(f"Booking {self.id} cancelled by {cancelled_by.value}")

    def mark_no_show(self, fee_charged: int, reason: str, at: Optional[datetime] = None) -> None:
        self.status = BookingStatus.NO_SHOW.value
        self.no_show_at = at or _now_utc()
        self.fee_charged = fee_charged
        self.refund_amount = max(0, int(self.deposit_amount) - fee_charged)
        self.refund_reason = "no_show"
        self.cancellation_reason = reason
        logger.info(f"Booking {self.id} marked as no-show")

    def complete(self, at: Optional[datetime] = None) -> None:
        self.status = BookingStatus.COMPLETED.value
        self.completed_at = at or _now_utc()
        self.fee_charged = int(self.deposit_amount)
        self.refund_amount = 0
        logger.info(f"Booking {self.id} marked as completed")

    @property
    def retained_amount(self) -> int:
        """Deposit currently kept by the provider (not refunded)."""
        return max(0, int(self.deposit_amount) - int(self.refund_amount or 0))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "service_id": self.service_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "booking_date": _iso(self.booking_date),
            "booking_end": _iso(self.booking_end),
            "duration": self.duration,
            "notes": self.notes,
            "deposit_amount": self.deposit_amount,
            "refund_amount": self.refund_amount,
            "fee_charged": self.fee_charged,
            "refund_reason": self.refund_reason,
            "status": self.status,
            "deposit_status": self.deposit_status,
            "dispute_status": self.dispute_status,
            "flex_pass_purchased": self.flex_pass_purchased,
            "flex_pass_fee": self.flex_pass_fee,
            "cancellation_time": _iso(self.cancellation_time),
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "confirmed_at": _iso(self.confirmed_at),
            "completed_at": _iso(self.completed_at),
            "no_show_at": _iso(self.no_show_at),
            "refunded_at": _iso(self.refunded_at),
            "dispute_reason": self.dispute_reason,
            "dispute_created_at": _iso(self.dispute_created_at),
            "dispute_resolved_at": _iso(self.dispute_resolved_at),
            "dispute_resolution_notes": self.dispute_resolution_notes,
            "created_at": _iso(self.created_at),
        }


def _occupying_status_list() -> str:
    return ", ".join(f"'{status}'" for status in settings.occupying_booking_statuses())


# PostgreSQL: exclusion constraint over (provider, [start, end)) for occupying rows.
event.listen(
    Booking.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
        "EXCLUDE USING gist ("
        "provider_id WITH =, "
        "tstzrange(booking_date, booking_end, '[)') WITH &&"
        f") WHERE (status IN ({_occupying_status_list()}))"
    ).execute_if(dialect="postgresql"),
)

# SQLite: triggers raising an IntegrityError that names the same constraint.
_SQLITE_OVERLAP_PREDICATE = (
    "SELECT RAISE(ABORT, '{name}') WHERE EXISTS ("
    "SELECT 1 FROM bookings b "
    "WHERE b.provider_id = NEW.provider_id "
    "AND b.id != NEW.id "
    "AND b.status IN ({statuses}) "
    "AND julianday(b.booking_date) < julianday(NEW.booking_end) "
    "AND julianday(b.booking_end) > julianday(NEW.booking_date));"
)

event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_insert "
        "BEFORE INSERT ON bookings "
        f"WHEN NEW.status IN ({_occupying_status_list()}) "
        "BEGIN "
        + _SQLITE_OVERLAP_PREDICATE.format(
            name=OVERLAP_CONSTRAINT_NAME, statuses=_occupying_status_list()
        )
        + " END"
    ).execute_if(dialect="sqlite"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_update "
        "BEFORE UPDATE OF status ON bookings "
        f"WHEN NEW.status IN ({_occupying_status_list()}) "
        f"AND OLD.status NOT IN ({_occupying_status_list()}) "
        "BEGIN "
        + _SQLITE_OVERLAP_PREDICATE.format(
            name=OVERLAP_CONSTRAINT_NAME, statuses=_occupying_status_list()
        )
        + " END"
    ).execute_if(dialect="sqlite"),
)
