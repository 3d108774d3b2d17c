# backend/slotwise/services/payment_gateway.py
"""
Payment boundary for Slotwise.

The engine never moves money itself: it asks a gateway to capture a deposit
or refund part of one, and records the returned references on the booking.
Settlement arrives later as payment signals (confirm_payment,
handle_payment_failed, handle_refund_succeeded on BookingService).

StripePaymentGateway talks to Stripe; NullPaymentGateway records requests in
memory and is used whenever Stripe is not configured (local runs, tests).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import stripe
import ulid

from ..core.config import settings
from ..core.exceptions import PaymentGatewayError

if TYPE_CHECKING:
    from ..models.booking import Booking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntentHandle:
    """Reference returned for a deposit capture request."""

    payment_intent_id: str
    status: str
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class RefundHandle:
    refund_id: str
    amount: int
    status: str


class PaymentGateway(ABC):
    """Outbound payment requests issued by the booking lifecycle."""

    @abstractmethod
    def request_deposit_capture(self, booking: "Booking") -> PaymentIntentHandle:
        """Ask the processor to collect ``booking.deposit_amount`` (plus any flex pass fee)."""

    @abstractmethod
    def request_refund(
        self,
        booking: "Booking",
        amount: int,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RefundHandle:
        """Ask the processor to return ``amount`` cents of the captured deposit."""

    @abstractmethod
    def cancel_deposit_capture(self, booking: "Booking") -> None:
        """Abandon an uncollected deposit."""


def _capture_amount(booking: "Booking") -> int:
    return int(booking.deposit_amount) + int(booking.flex_pass_fee or 0)


def _booking_metadata(booking: "Booking") -> Dict[str, str]:
    return {
        "booking_id": str(booking.id),
        "provider_id": str(booking.provider_id),
        "service_id": str(booking.service_id),
        "deposit_amount": str(booking.deposit_amount),
        "flex_pass_fee": str(booking.flex_pass_fee or 0),
    }


class StripePaymentGateway(PaymentGateway):
    """Deposit capture and refunds through Stripe PaymentIntents."""

    def __init__(self, api_key: str, currency: Optional[str] = None):
        stripe.api_key = api_key
        stripe.max_network_retries = 1
        self.currency = currency or settings.stripe_currency
        logger.info("Stripe payment gateway configured")

    def request_deposit_capture(self, booking: "Booking") -> PaymentIntentHandle:
        try:
            intent = stripe.PaymentIntent.create(
                amount=_capture_amount(booking),
                currency=self.currency,
                receipt_email=booking.customer_email,
                metadata=_booking_metadata(booking),
                automatic_payment_methods={"enabled": True},
                idempotency_key=f"deposit:{booking.id}",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating deposit intent for booking {booking.id}: {e}")
            raise PaymentGatewayError(f"Failed to request deposit capture: {e}") from e

        logger.info(f"Created payment intent {intent.id} for booking {booking.id}")
        return PaymentIntentHandle(
            payment_intent_id=intent.id,
            status=intent.status,
            client_secret=getattr(intent, "client_secret", None),
        )

    def request_refund(
        self,
        booking: "Booking",
        amount: int,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RefundHandle:
        if not booking.payment_intent_id:
            raise PaymentGatewayError(f"Booking {booking.id} has no payment intent to refund")
        if amount <= 0:
            raise PaymentGatewayError("Refund amount must be positive")

        refund_metadata = _booking_metadata(booking)
        refund_metadata["refund_reason"] = reason
        refund_metadata.update({k: str(v) for k, v in (metadata or {}).items()})

        try:
            refund = stripe.Refund.create(
                payment_intent=booking.payment_intent_id,
                amount=amount,
                metadata=refund_metadata,
                idempotency_key=f"refund:{booking.id}:{reason}:{amount}",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error refunding booking {booking.id}: {e}")
            raise PaymentGatewayError(f"Failed to request refund: {e}") from e

        logger.info(f"Requested refund {refund.id} of {amount} for booking {booking.id}")
        return RefundHandle(refund_id=refund.id, amount=amount, status=refund.status)

    def cancel_deposit_capture(self, booking: "Booking") -> None:
        if not booking.payment_intent_id:
            return
        try:
            stripe.PaymentIntent.cancel(
                booking.payment_intent_id, idempotency_key=f"cancel:{booking.id}"
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error cancelling intent {booking.payment_intent_id}: {e}")
            raise PaymentGatewayError(f"Failed to cancel deposit capture: {e}") from e


@dataclass
class RecordedPaymentCall:
    action: str
    booking_id: str
    amount: int
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class NullPaymentGateway(PaymentGateway):
    """
    Gateway that only records requests.

    Set ``fail_refunds`` / ``fail_captures`` to simulate processor rejections.
    """

    def __init__(self) -> None:
        self.calls: List[RecordedPaymentCall] = []
        self.fail_refunds = False
        self.fail_captures = False

    def request_deposit_capture(self, booking: "Booking") -> PaymentIntentHandle:
        if self.fail_captures:
            raise PaymentGatewayError("Simulated deposit capture failure")
        self.calls.append(RecordedPaymentCall("capture", booking.id, _capture_amount(booking)))
        return PaymentIntentHandle(
            payment_intent_id=f"pi_null_{ulid.ULID()}", status="requires_payment_method"
        )

    def request_refund(
        self,
        booking: "Booking",
        amount: int,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RefundHandle:
        if self.fail_refunds:
            raise PaymentGatewayError("Simulated refund failure")
        self.calls.append(
            RecordedPaymentCall("refund", booking.id, amount, reason, dict(metadata or {}))
        )
        return RefundHandle(refund_id=f"re_null_{ulid.ULID()}", amount=amount, status="pending")

    def cancel_deposit_capture(self, booking: "Booking") -> None:
        self.calls.append(RecordedPaymentCall("cancel_capture", booking.id, 0))

    def refunds(self) -> List[RecordedPaymentCall]:
        return [call for call in self.calls if call.action == "refund"]


def get_payment_gateway() -> PaymentGateway:
    """Stripe when a secret key is configured, otherwise the recording gateway."""
    if settings.stripe_secret_key:
        return StripePaymentGateway(settings.stripe_secret_key.get_secret_value())
    logger.warning("Stripe secret key not configured - payments will only be recorded")
    return NullPaymentGateway()
