# backend/slotwise/services/notification_service.py
"""
Notification boundary for Slotwise.

Lifecycle transitions never talk to a delivery channel directly. Each one
writes an outbox event in the same transaction as the booking change; the
Celery outbox tasks later hand the event to the NotificationProvider with
retries and backoff.

Enqueueing runs inside a SAVEPOINT: a failed insert is logged and rolled
back on its own, and the transition it describes still commits.
"""

from dataclasses import dataclass
from datetime import timezone
import logging
from time import monotonic
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.booking import Booking
from ..models.event_outbox import EventOutbox, EventOutboxStatus
from ..monitoring.prometheus_metrics import PrometheusMetrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_provider import NotificationProvider, NotificationProviderTemporaryError

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]

CUSTOMER = "customer"
PROVIDER = "provider"

# event type -> who is told about it
EVENT_RECIPIENTS: Dict[str, tuple[str, ...]] = {
    "booking.created": (PROVIDER,),
    "booking.confirmed": (CUSTOMER, PROVIDER),
    "booking.cancelled": (CUSTOMER, PROVIDER),
    "booking.completed": (CUSTOMER,),
    "booking.no_show": (CUSTOMER, PROVIDER),
    "booking.dispute_opened": (PROVIDER, CUSTOMER),
    "booking.dispute_resolved": (CUSTOMER, PROVIDER),
    "booking.payment_failed": (CUSTOMER,),
    "booking.refund_issued": (CUSTOMER,),
}


def next_backoff(attempt_number: int) -> int:
    """Backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


class NotificationService(BaseService):
    """Writes booking lifecycle events to the outbox."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.event_outbox_repository = RepositoryFactory.create_event_outbox_repository(db)

    @staticmethod
    def _booking_event_identity(booking: Booking, event_type: str) -> tuple[str, str]:
        timestamp = booking.updated_at or booking.created_at
        version = timestamp.astimezone(timezone.utc).isoformat() if timestamp else "initial"
        return f"booking:{booking.id}:{event_type}:{version}", version

    @staticmethod
    def _serialize_booking_event_payload(
        booking: Booking, event_type: str, version: str
    ) -> Dict[str, Any]:
        """Build JSON-safe payload for outbox events."""

        def _iso(value: Any) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "booking_id": booking.id,
            "event_type": event_type,
            "version": version,
            "recipients": list(EVENT_RECIPIENTS.get(event_type, (CUSTOMER, PROVIDER))),
            "status": booking.status,
            "deposit_status": booking.deposit_status,
            "dispute_status": booking.dispute_status,
            "provider_id": booking.provider_id,
            "service_id": booking.service_id,
            "customer_name": booking.customer_name,
            "customer_email": booking.customer_email,
            "booking_date": _iso(booking.booking_date),
            "booking_end": _iso(booking.booking_end),
            "deposit_amount": booking.deposit_amount,
            "refund_amount": booking.refund_amount,
            "fee_charged": booking.fee_charged,
            "refund_reason": booking.refund_reason,
        }

    def enqueue_booking_event(
        self, booking: Booking, event_type: str, extra: Optional[Dict[str, Any]] = None
    ) -> Optional[EventOutbox]:
        """
        Record ``event_type`` for ``booking`` in the current transaction.

        Idempotent per (booking, event type, booking version). Returns None when
        the outbox write failed; the caller's transaction is left intact.
        """
        if event_type not in EVENT_RECIPIENTS:
            raise ValueError(f"Unknown booking event type: {event_type}")

        self.db.flush()  # Populate timestamps before computing identity
        idempotency_key, version = self._booking_event_identity(booking, event_type)
        payload = self._serialize_booking_event_payload(booking, event_type, version)
        if extra:
            payload.update(extra)

        try:
            with self.db.begin_nested():
                return self.event_outbox_repository.enqueue(
                    event_type=event_type,
                    aggregate_id=booking.id,
                    payload=payload,
                    idempotency_key=idempotency_key,
                )
        except SQLAlchemyError as e:
            self.logger.error(
                f"Failed to enqueue {event_type} for booking {booking.id}: {e}",
                extra={"booking_id": booking.id, "event_type": event_type},
            )
            return None

    def list_booking_events(self, booking_id: str) -> List[EventOutbox]:
        return self.event_outbox_repository.list_for_aggregate(booking_id)


@dataclass(frozen=True)
class DeliveryOutcome:
    event_id: str
    status: str  # sent | retry | failed | skipped | missing
    attempt_count: int = 0
    backoff_seconds: int = 0
    error: Optional[str] = None


class NotificationDispatcher:
    """
    Delivers outbox events through a NotificationProvider.

    The dispatcher records each attempt on the outbox row but never commits;
    the caller (a Celery task) owns the session scope and schedules retries
    from the returned outcome.
    """

    def __init__(self, db: Session, provider: Optional[NotificationProvider] = None):
        self.db = db
        self.provider = provider or NotificationProvider()
        self.repository = RepositoryFactory.create_event_outbox_repository(db)

    def due_event_ids(self, limit: Optional[int] = None) -> List[str]:
        pending = self.repository.fetch_pending(limit=limit or settings.outbox_dispatch_batch_size)
        return [event.id for event in pending]

    def deliver(self, event_id: str) -> DeliveryOutcome:
        event = self.repository.get_by_id(event_id, for_update=True)
        if event is None:
            logger.warning("Outbox event %s missing; skipping", event_id)
            return DeliveryOutcome(event_id=event_id, status="missing")
        if event.status != EventOutboxStatus.PENDING.value:
            logger.debug("Outbox event %s already %s; skipping", event_id, event.status)
            return DeliveryOutcome(
                event_id=event_id, status="skipped", attempt_count=event.attempt_count
            )

        attempt_number = event.attempt_count + 1
        PrometheusMetrics.record_notification_attempt(event.event_type)
        start = monotonic()

        try:
            self.provider.send(
                event_type=event.event_type,
                payload=event.payload,
                idempotency_key=event.idempotency_key,
            )
        except (NotificationProviderTemporaryError, ValueError) as exc:
            PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
            return self._record_failure(event, attempt_number, exc)

        PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
        self.repository.mark_sent(event.id, attempt_number)
        PrometheusMetrics.record_notification_outcome(event.event_type, "sent")
        logger.info(
            "Delivered outbox event %s type=%s attempts=%s",
            event.id,
            event.event_type,
            attempt_number,
        )
        return DeliveryOutcome(event_id=event.id, status="sent", attempt_count=attempt_number)

    def _record_failure(
        self, event: EventOutbox, attempt_number: int, exc: Exception
    ) -> DeliveryOutcome:
        backoff = next_backoff(attempt_number)
        terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
        self.repository.mark_failed(
            event.id,
            attempt_count=attempt_number,
            backoff_seconds=backoff,
            error=str(exc),
            terminal=terminal,
        )
        if terminal:
            PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
            logger.error("Outbox event %s failed after %s attempts", event.id, attempt_number)
            return DeliveryOutcome(
                event_id=event.id, status="failed", attempt_count=attempt_number, error=str(exc)
            )

        logger.warning(
            "Retrying outbox event %s attempt=%s backoff=%ss", event.id, attempt_number, backoff
        )
        return DeliveryOutcome(
            event_id=event.id,
            status="retry",
            attempt_count=attempt_number,
            backoff_seconds=backoff,
            error=str(exc),
        )
