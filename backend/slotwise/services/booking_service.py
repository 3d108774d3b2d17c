# backend/slotwise/services/booking_service.py
"""
Booking Service for Slotwise

Booking lifecycle manager:
- admission (live conflict pre-check, policy snapshot, deposit request)
- confirmation and payment signals
- cancellation with snapshot-based refunds
- no-show and completion
- disputes and their resolution

Every transition is total: it either commits the state change together with
its outbox event, or raises a typed exception and leaves the booking as it was.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    InvalidStateTransitionException,
    NotFoundException,
    PaymentGatewayError,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..database.session_utils import violated_constraint_name
from ..models.booking import (
    OVERLAP_CONSTRAINT_NAME,
    Booking,
    BookingAction,
    BookingStatus,
    CancelledBy,
    DepositStatus,
    DisputeStatus,
)
from ..models.service import Service
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate
from ..utils.time_utils import ensure_utc, is_in_past
from .base import BaseService
from .conflict_checker import ConflictChecker
from .notification_service import NotificationService
from .payment_gateway import PaymentGateway, get_payment_gateway
from .policy_snapshot import PolicySnapshot
from .refund_calculator import RefundCalculator, load_policy

logger = logging.getLogger(__name__)

GENERIC_CONFLICT_MESSAGE = "This time slot is no longer available. Please select a different time."
MIN_DEPOSIT_CENTS = 100

PROVIDER_NO_SHOW_REASON = "Marked as no-show by provider"
DEPOSIT_NOT_COLLECTED = "deposit_not_collected"
DISPUTE_RESOLVED_CUSTOMER = "dispute_resolved_customer"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class BookingService(BaseService):
    """Owns every booking state transition."""

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PaymentGateway] = None,
        notification_service: Optional[NotificationService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        refund_calculator: Optional[RefundCalculator] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.service_repository = RepositoryFactory.create_service_repository(db)
        self.payment_gateway = payment_gateway or get_payment_gateway()
        self.notification_service = notification_service or NotificationService(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.refund_calculator = refund_calculator or RefundCalculator()

    # Helpers

    def _get_booking(self, booking_id: str, provider_id: Optional[str] = None) -> Booking:
        if provider_id:
            booking = self.repository.get_for_provider(booking_id, provider_id)
        else:
            booking = self.repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundException("Booking not found")
        return booking

    def _get_booking_by_intent(self, payment_intent_id: str) -> Booking:
        booking = self.repository.get_by_payment_intent(payment_intent_id)
        if not booking:
            raise NotFoundException(f"No booking for payment intent {payment_intent_id}")
        return booking

    @staticmethod
    def _require(booking: Booking, action: BookingAction, message: Optional[str] = None) -> None:
        if not booking.can(action):
            raise InvalidStateTransitionException(action.value, booking.status, message)

    @staticmethod
    def _auto_refunds(booking: Booking) -> bool:
        policy = load_policy(booking)
        return policy.auto_refund_on_cancel if policy else False

    def _record_transition(self, booking: Booking, action: str, to_status: str) -> None:
        prometheus_metrics.record_booking_transition(action, to_status)
        self.log_operation(
            action, booking_id=booking.id, provider_id=booking.provider_id, to_status=to_status
        )

    def _resolve_integrity_conflict_message(
        self, integrity_error: IntegrityError
    ) -> Tuple[str, bool]:
        """
        Map a database IntegrityError to a conflict message.

        Returns the message and whether the error was the provider overlap constraint.
        """
        constraint_name = violated_constraint_name(integrity_error, known=OVERLAP_CONSTRAINT_NAME)
        return GENERIC_CONFLICT_MESSAGE, constraint_name == OVERLAP_CONSTRAINT_NAME

    @staticmethod
    def _is_deadlock_error(exc: Exception) -> bool:
        return "deadlock detected" in str(exc).lower()

    def _raise_conflict_from_repo_error(
        self, exc: RepositoryException, details: Dict[str, Any]
    ) -> None:
        """Translate repository-level deadlocks and exclusion failures into booking conflicts."""
        message = str(exc).lower()
        if "deadlock detected" in message or "exclusion constraint" in message:
            prometheus_metrics.record_booking_conflict("constraint")
            raise BookingConflictException(message=GENERIC_CONFLICT_MESSAGE, details=details) from exc
        raise exc

    # Admission

    def _validate_booking_prerequisites(self, data: BookingCreate, now: datetime) -> Service:
        service = self.service_repository.get_for_provider(data.service_id, data.provider_id)
        if not service or not service.is_active:
            raise NotFoundException("Service not found")

        if data.duration is not None and data.duration != service.duration:
            raise ValidationException(
                f"Duration must match the service duration of {service.duration} minutes",
                code="INVALID_DURATION",
            )

        if is_in_past(ensure_utc(data.booking_date), now):
            raise ValidationException("Booking time must be in the future", code="BOOKING_IN_PAST")

        if data.purchase_flex_pass and not service.offers_flex_pass:
            raise ValidationException(
                "Flex pass is not available for this service", code="FLEX_PASS_UNAVAILABLE"
            )
        return service

    def _resolve_deposit(self, service: Service) -> int:
        try:
            deposit = service.resolve_deposit_amount()
        except ValueError as e:
            raise ValidationException(str(e), code="INVALID_DEPOSIT") from e
        if deposit < MIN_DEPOSIT_CENTS:
            raise ValidationException(
                f"Deposit must be at least {MIN_DEPOSIT_CENTS} cents", code="INVALID_DEPOSIT"
            )
        return deposit

    @BaseService.measure_operation("create_booking")
    def create_booking(self, data: BookingCreate, now: Optional[datetime] = None) -> Booking:
        """
        Admit a new booking in ``pending`` state.

        Raises:
            NotFoundException: Unknown, inactive or foreign service
            ValidationException: Duration mismatch, past start, bad deposit or flex pass
            BookingConflictException: Window taken (pre-check or storage constraint)
            ServiceException: The payment boundary rejected the deposit request
        """
        now = ensure_utc(now or _now_utc())
        service = self._validate_booking_prerequisites(data, now)
        start = ensure_utc(data.booking_date)
        duration = int(service.duration)

        conflicts = self.conflict_checker.find_conflicts(data.provider_id, start, duration)
        if conflicts["bookings"] or conflicts["blocked_slots"]:
            prometheus_metrics.record_booking_conflict("precheck")
            raise BookingConflictException(details=conflicts)

        deposit = self._resolve_deposit(service)
        snapshot = PolicySnapshot.from_service(service, now)
        conflict_details = {
            "provider_id": data.provider_id,
            "booking_date": start.isoformat(),
            "duration": duration,
        }

        try:
            with self.repository.transaction():
                booking = self.repository.create(
                    provider_id=data.provider_id,
                    service_id=service.id,
                    customer_name=data.customer_name,
                    customer_email=str(data.customer_email),
                    customer_phone=data.customer_phone,
                    customer_address=data.customer_address,
                    booking_date=start,
                    duration=duration,
                    notes=data.notes,
                    deposit_amount=deposit,
                    policy_snapshot=snapshot.to_payload(),
                    status=BookingStatus.PENDING.value,
                    deposit_status=DepositStatus.PENDING.value,
                    flex_pass_purchased=data.purchase_flex_pass,
                    flex_pass_fee=service.flex_pass_fee() if data.purchase_flex_pass else None,
                    extra_metadata=data.metadata,
                )
                try:
                    handle = self.payment_gateway.request_deposit_capture(booking)
                except PaymentGatewayError as e:
                    raise ServiceException(
                        "Failed to initiate deposit payment", code="PAYMENT_UNAVAILABLE"
                    ) from e
                booking.payment_intent_id = handle.payment_intent_id
                self.repository.flush()
                self.notification_service.enqueue_booking_event(booking, "booking.created")
        except IntegrityError as exc:
            message, is_overlap = self._resolve_integrity_conflict_message(exc)
            if not is_overlap:
                raise ServiceException(f"Failed to create booking: {exc.orig}") from exc
            prometheus_metrics.record_booking_conflict("constraint")
            raise BookingConflictException(message=message, details=conflict_details) from exc
        except OperationalError as exc:
            if self._is_deadlock_error(exc):
                prometheus_metrics.record_booking_conflict("constraint")
                raise BookingConflictException(
                    message=GENERIC_CONFLICT_MESSAGE, details=conflict_details
                ) from exc
            raise
        except RepositoryException as exc:
            self._raise_conflict_from_repo_error(exc, conflict_details)

        self._record_transition(booking, "create", booking.status)
        return booking

    # Confirmation and payment signals

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(
        self, booking_id: str, charge_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> Booking:
        """``pending -> confirmed`` with the deposit marked paid."""
        booking = self._get_booking(booking_id)
        return self._confirm(booking, charge_id, now)

    def _confirm(
        self, booking: Booking, charge_id: Optional[str], now: Optional[datetime]
    ) -> Booking:
        self._require(booking, BookingAction.CONFIRM)
        with self.transaction():
            booking.confirm(charge_id=charge_id, at=ensure_utc(now or _now_utc()))
            self.notification_service.enqueue_booking_event(booking, "booking.confirmed")
        self._record_transition(booking, "confirm", booking.status)
        return booking

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self, payment_intent_id: str, charge_id: str, now: Optional[datetime] = None
    ) -> Booking:
        """Payment-success signal. Redelivery for an already confirmed booking is a no-op."""
        booking = self._get_booking_by_intent(payment_intent_id)
        if booking.status == BookingStatus.CONFIRMED.value:
            self.logger.info(f"Booking {booking.id} already confirmed for {payment_intent_id}")
            return booking
        return self._confirm(booking, charge_id, now)

    @BaseService.measure_operation("handle_payment_failed")
    def handle_payment_failed(
        self, payment_intent_id: str, now: Optional[datetime] = None
    ) -> Booking:
        """Payment-failure signal: release the slot of a pending booking."""
        booking = self._get_booking_by_intent(payment_intent_id)
        if booking.deposit_status == DepositStatus.FAILED.value:
            return booking
        if booking.status != BookingStatus.PENDING.value:
            raise InvalidStateTransitionException(
                "handle_payment_failed",
                booking.status,
                f"Cannot fail payment for booking with status '{booking.status}'",
            )

        with self.transaction():
            booking.cancel(
                CancelledBy.SYSTEM,
                reason="Deposit payment failed",
                refund_amount=0,
                fee_charged=0,
                refund_reason=DEPOSIT_NOT_COLLECTED,
                at=ensure_utc(now or _now_utc()),
            )
            booking.deposit_status = DepositStatus.FAILED.value
            self.notification_service.enqueue_booking_event(booking, "booking.payment_failed")
        self._record_transition(booking, "payment_failed", booking.status)
        return booking

    @BaseService.measure_operation("handle_refund_succeeded")
    def handle_refund_succeeded(
        self,
        payment_intent_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """External confirmation that a requested refund has settled."""
        if payment_intent_id:
            booking = self._get_booking_by_intent(payment_intent_id)
        elif booking_id:
            booking = self._get_booking(booking_id)
        else:
            raise ValidationException("payment_intent_id or booking_id is required")

        if booking.deposit_status == DepositStatus.REFUNDED.value:
            self.logger.info(f"Refund for booking {booking.id} already settled")
            return booking

        if not booking.refund_requested_at:
            raise BusinessRuleException(
                "No refund has been requested for this booking", code="NO_REFUND_REQUESTED"
            )

        with self.transaction():
            booking.deposit_status = DepositStatus.REFUNDED.value
            booking.refunded_at = ensure_utc(now or _now_utc())
            self.notification_service.enqueue_booking_event(
                booking, "booking.refund_issued", {"refunded_amount": booking.refund_amount}
            )
        self._record_transition(booking, "refund_succeeded", booking.deposit_status)
        return booking

    def _request_refund(
        self,
        booking: Booking,
        amount: int,
        reason: str,
        now: datetime,
        failure_message: str,
    ) -> None:
        """Ask the payment boundary for ``amount``; a rejection aborts the transition."""
        try:
            self.payment_gateway.request_refund(
                booking, amount, reason, {"booking_status": booking.status}
            )
        except PaymentGatewayError as e:
            self.logger.error(f"Refund request failed for booking {booking.id}: {e}")
            raise ServiceException(failure_message, code="REFUND_FAILED") from e
        booking.refund_requested_at = now

    # Cancellation

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        actor: Union[CancelledBy, str],
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        provider_id: Optional[str] = None,
    ) -> Booking:
        """
        Cancel a pending or confirmed booking.

        Refund and fee come from the booking's own policy snapshot. A refund is
        requested when the deposit was paid, the refund is positive and the
        snapshot auto-refunds.
        """
        cancelled_by = CancelledBy(actor)
        booking = self._get_booking(booking_id, provider_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise InvalidStateTransitionException(
                BookingAction.CANCEL.value, booking.status, "Booking is already cancelled"
            )
        self._require(
            booking,
            BookingAction.CANCEL,
            f"Cannot cancel booking with status '{booking.status}'",
        )

        now = ensure_utc(now or _now_utc())
        deposit_paid = booking.deposit_status == DepositStatus.PAID.value

        if deposit_paid:
            result = self.refund_calculator.calculate_refund(booking, now)
            refund_amount = RefundCalculator.validate_refund_amount(
                result.refund_amount, int(booking.deposit_amount)
            )
            fee_charged = result.fee_charged
            refund_reason: Optional[str] = result.reason.value
            self.logger.info(
                f"Refund for booking {booking.id}: {refund_amount} ({result.explanation})"
            )
        else:
            refund_amount, fee_charged, refund_reason = 0, 0, DEPOSIT_NOT_COLLECTED

        with self.transaction():
            booking.cancel(
                cancelled_by,
                reason=reason,
                refund_amount=refund_amount,
                fee_charged=fee_charged,
                refund_reason=refund_reason,
                at=now,
            )
            if deposit_paid and refund_amount > 0 and self._auto_refunds(booking):
                self._request_refund(
                    booking,
                    refund_amount,
                    refund_reason or "cancellation",
                    now,
                    "Failed to process refund for cancellation",
                )
            self.notification_service.enqueue_booking_event(booking, "booking.cancelled")

        if not deposit_paid and booking.payment_intent_id:
            try:
                self.payment_gateway.cancel_deposit_capture(booking)
            except PaymentGatewayError as e:
                self.logger.warning(
                    f"Could not abandon deposit intent {booking.payment_intent_id}: {e}"
                )

        self._record_transition(booking, "cancel", booking.status)
        return booking

    # No-show and completion

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(
        self,
        booking_id: str,
        provider_id: Optional[str] = None,
        now: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        ``confirmed -> no_show`` once the booking has started.

        The snapshot's no-show fee (or the whole deposit) is kept; any remainder
        is refunded under the same auto-refund rule as cancellations.
        """
        booking = self._get_booking(booking_id, provider_id)
        self._require(
            booking,
            BookingAction.MARK_NO_SHOW,
            f"Cannot mark booking as no-show. Current status: {booking.status}. "
            "Must be 'confirmed'.",
        )

        now = ensure_utc(now or _now_utc())
        if ensure_utc(booking.booking_date) > now:
            raise BusinessRuleException(
                "Cannot mark a booking as no-show before its start time",
                code="NO_SHOW_TOO_EARLY",
            )

        fee = self.refund_calculator.calculate_no_show_fee(booking)
        with self.transaction():
            booking.mark_no_show(fee, reason or PROVIDER_NO_SHOW_REASON, at=now)
            remainder = int(booking.refund_amount or 0)
            if (
                remainder > 0
                and booking.deposit_status == DepositStatus.PAID.value
                and self._auto_refunds(booking)
            ):
                self._request_refund(
                    booking, remainder, "no_show", now, "Failed to process refund for no-show"
                )
            self.notification_service.enqueue_booking_event(booking, "booking.no_show")

        self._record_transition(booking, "mark_no_show", booking.status)
        return booking

    @BaseService.measure_operation("complete_booking")
    def complete_booking(
        self, booking_id: str, provider_id: str, now: Optional[datetime] = None
    ) -> Booking:
        """``confirmed -> completed`` once the booked window has elapsed."""
        booking = self._get_booking(booking_id, provider_id)
        self._require(
            booking,
            BookingAction.COMPLETE,
            f"Cannot complete booking with status '{booking.status}'",
        )

        now = ensure_utc(now or _now_utc())
        if ensure_utc(booking.booking_end) > now:
            raise BusinessRuleException(
                "Cannot complete a booking before it has ended", code="BOOKING_NOT_ENDED"
            )

        with self.transaction():
            booking.complete(at=now)
            self.notification_service.enqueue_booking_event(booking, "booking.completed")

        self._record_transition(booking, "complete", booking.status)
        return booking

    # Disputes

    @BaseService.measure_operation("open_dispute")
    def open_dispute(
        self, booking_id: str, reason: str, now: Optional[datetime] = None
    ) -> Booking:
        """Open a dispute on a cancelled, no-show or completed booking."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("Dispute reason is required", code="DISPUTE_REASON_REQUIRED")

        booking = self._get_booking(booking_id)
        if booking.dispute_status == DisputeStatus.PENDING.value:
            raise InvalidStateTransitionException(
                BookingAction.OPEN_DISPUTE.value,
                booking.status,
                "This booking already has a pending dispute",
                details={"dispute_status": booking.dispute_status},
            )
        if booking.dispute_status != DisputeStatus.NONE.value:
            raise InvalidStateTransitionException(
                BookingAction.OPEN_DISPUTE.value,
                booking.status,
                "This booking dispute has already been resolved",
                details={"dispute_status": booking.dispute_status},
            )
        self._require(
            booking,
            BookingAction.OPEN_DISPUTE,
            f"Cannot dispute a booking with status '{booking.status}'",
        )

        with self.transaction():
            booking.dispute_status = DisputeStatus.PENDING.value
            booking.dispute_reason = reason
            booking.dispute_created_at = ensure_utc(now or _now_utc())
            self.notification_service.enqueue_booking_event(booking, "booking.dispute_opened")

        self._record_transition(booking, "open_dispute", booking.dispute_status)
        return booking

    @BaseService.measure_operation("resolve_dispute")
    def resolve_dispute(
        self,
        booking_id: str,
        resolver_id: str,
        resolution: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Close a pending dispute in favour of the customer or the provider.

        A customer outcome refunds whatever the provider still retains, so the
        customer ends up with the whole deposit back. A deposit that was never
        collected keeps its amounts. A provider outcome leaves the money as it is.
        """
        if resolution not in ("customer", "provider"):
            raise ValidationException(
                "Resolution must be 'customer' or 'provider'", code="INVALID_RESOLUTION"
            )

        booking = self._get_booking(booking_id)
        if booking.dispute_status != DisputeStatus.PENDING.value:
            raise InvalidStateTransitionException(
                "resolve_dispute",
                booking.status,
                "No pending dispute found for this booking",
                details={"dispute_status": booking.dispute_status},
            )

        now = ensure_utc(now or _now_utc())
        with self.transaction():
            if resolution == "customer":
                additional_refund = booking.retained_amount
                collected = booking.deposit_status in (
                    DepositStatus.PAID.value,
                    DepositStatus.REFUNDED.value,
                )
                if collected:
                    if additional_refund > 0:
                        self._request_refund(
                            booking,
                            additional_refund,
                            DISPUTE_RESOLVED_CUSTOMER,
                            now,
                            "Failed to process refund for dispute resolution",
                        )
                    booking.refund_amount = int(booking.deposit_amount)
                    booking.fee_charged = 0
                    booking.refund_reason = DISPUTE_RESOLVED_CUSTOMER
                booking.dispute_status = DisputeStatus.RESOLVED_CUSTOMER.value
            else:
                booking.dispute_status = DisputeStatus.RESOLVED_PROVIDER.value

            booking.dispute_resolved_at = now
            booking.dispute_resolution_notes = notes
            booking.dispute_resolved_by = resolver_id
            self.notification_service.enqueue_booking_event(booking, "booking.dispute_resolved")

        self._record_transition(booking, "resolve_dispute", booking.dispute_status)
        return booking

    # Reads

    def get_booking(self, booking_id: str, provider_id: Optional[str] = None) -> Booking:
        return self._get_booking(booking_id, provider_id)

    def list_provider_bookings(
        self,
        provider_id: str,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[Booking]:
        if status is not None:
            try:
                status = BookingStatus(status).value
            except ValueError as e:
                raise ValidationException(f"Unknown booking status: {status}") from e
        return self.repository.list_for_provider(
            provider_id,
            status=status,
            date_from=ensure_utc(date_from) if date_from else None,
            date_to=ensure_utc(date_to) if date_to else None,
        )
