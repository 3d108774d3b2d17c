"""Refund, no-show fee and flex pass arithmetic evaluated against a booking's policy snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..core.exceptions import ValidationException
from ..models.booking import DepositStatus
from ..utils.time_utils import ensure_utc
from .policy_snapshot import (
    DEFAULT_FLEX_PASS_REVENUE_SHARE_PERCENT,
    InvalidPolicySnapshotError,
    PolicySnapshot,
)

if TYPE_CHECKING:
    from ..models.booking import Booking

logger = logging.getLogger(__name__)


class RefundReason(str, Enum):
    ALREADY_REFUNDED = "already_refunded"
    NO_REFUND_POLICY = "no_refund_policy"
    FLEX_PASS_PROTECTION = "flex_pass_protection"
    NO_REFUND_TOO_LATE = "no_refund_too_late"
    WITHIN_WINDOW = "within_window"
    LATE_CANCELLATION = "late_cancellation"


@dataclass(frozen=True)
class RefundResult:
    refund_amount: int
    fee_charged: int
    reason: RefundReason
    explanation: str
    hours_until_booking: float
    policy_used: Optional[PolicySnapshot]
    calculated_at: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {
            "refund_amount": int(self.refund_amount),
            "fee_charged": int(self.fee_charged),
            "reason": self.reason.value,
            "explanation": self.explanation,
            "hours_until_booking": round(self.hours_until_booking, 2),
            "policy_used": self.policy_used.to_payload() if self.policy_used else None,
            "calculated_at": self.calculated_at.isoformat(),
        }


@dataclass(frozen=True)
class FlexPassSplit:
    platform_amount: int
    provider_amount: int


def _format_dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def load_policy(booking: "Booking") -> Optional[PolicySnapshot]:
    """The booking's snapshot, or None when it has none or it cannot be read."""
    if not booking.policy_snapshot:
        return None
    try:
        return PolicySnapshot.from_payload(booking.policy_snapshot)
    except InvalidPolicySnapshotError as exc:
        logger.error(f"Unreadable policy snapshot on booking {booking.id}: {exc}")
        return None


class RefundCalculator:
    """Pure policy arithmetic; never touches storage."""

    def calculate_refund(
        self, booking: "Booking", cancellation_time: Optional[datetime] = None
    ) -> RefundResult:
        """
        Refund and fee for cancelling ``booking`` at ``cancellation_time``.

        Rules apply in order; the first match wins:
        already refunded, missing policy, flex pass, no partial refunds
        inside the window, inside the minimum notice, outside the window,
        otherwise a late cancellation charged the late fee.

        Raises:
            ValidationException: deposit is not positive
        """
        now = ensure_utc(cancellation_time or datetime.now(timezone.utc))
        minutes_until = (ensure_utc(booking.booking_date) - now).total_seconds() // 60
        hours_until = minutes_until / 60
        deposit = int(booking.deposit_amount or 0)

        def _result(
            refund: int, fee: int, reason: RefundReason, explanation: str,
            policy: Optional[PolicySnapshot],
        ) -> RefundResult:
            return RefundResult(
                refund_amount=refund,
                fee_charged=fee,
                reason=reason,
                explanation=explanation,
                hours_until_booking=hours_until,
                policy_used=policy,
                calculated_at=now,
            )

        if booking.deposit_status == DepositStatus.REFUNDED.value:
            return _result(
                0, 0, RefundReason.ALREADY_REFUNDED, "Booking has already been refunded", None
            )

        if deposit <= 0:
            raise ValidationException(
                "Invalid deposit amount: must be greater than 0", code="INVALID_DEPOSIT"
            )

        policy = load_policy(booking)
        if policy is None:
            return _result(
                0,
                deposit,
                RefundReason.NO_REFUND_POLICY,
                "No refund policy available. Please contact support for assistance.",
                None,
            )

        if booking.flex_pass_purchased:
            return _result(
                deposit,
                0,
                RefundReason.FLEX_PASS_PROTECTION,
                "Full refund provided due to Flex Pass protection",
                policy,
            )

        window = policy.cancellation_window_hours
        if not policy.allow_partial_refunds and hours_until < window:
            return _result(
                0,
                deposit,
                RefundReason.NO_REFUND_POLICY,
                f"No refunds are given for cancellations within {window} hours of the booking",
                policy,
            )

        if hours_until < policy.minimum_cancellation_hours:
            return _result(
                0,
                deposit,
                RefundReason.NO_REFUND_TOO_LATE,
                f"Cancellations require at least {policy.minimum_cancellation_hours} hours notice",
                policy,
            )

        if hours_until >= window:
            return _result(
                deposit,
                0,
                RefundReason.WITHIN_WINDOW,
                f"Full refund for cancelling at least {window} hours in advance",
                policy,
            )

        fee = int(policy.late_cancellation_fee or 0)
        refund = max(0, deposit - fee)
        return _result(
            refund,
            deposit - refund,
            RefundReason.LATE_CANCELLATION,
            f"Late cancellation fee of {_format_dollars(fee)} applied",
            policy,
        )

    def calculate_no_show_fee(self, booking: "Booking") -> int:
        """Snapshot no-show fee, or the whole deposit; never more than the deposit."""
        deposit = int(booking.deposit_amount or 0)
        policy = load_policy(booking)
        if policy is None or not policy.no_show_fee:
            return deposit
        return min(int(policy.no_show_fee), deposit)

    @staticmethod
    def calculate_flex_pass_split(
        price: int, revenue_share_percent: int = DEFAULT_FLEX_PASS_REVENUE_SHARE_PERCENT
    ) -> FlexPassSplit:
        """Split a flex pass fee between the platform and the provider."""
        if price < 0:
            raise ValidationException("Flex pass price cannot be negative")
        if not 0 <= revenue_share_percent <= 100:
            raise ValidationException("Revenue share percent must be between 0 and 100")
        platform = int(round(price * revenue_share_percent / 100))
        return FlexPassSplit(platform_amount=platform, provider_amount=price - platform)

    @staticmethod
    def validate_refund_amount(refund_amount: int, deposit_amount: int) -> int:
        """Clamp a refund into ``[0, deposit_amount]``."""
        if refund_amount < 0:
            logger.warning(f"Refund amount {refund_amount} is negative; using 0")
            return 0
        if refund_amount > deposit_amount:
            logger.warning(
                f"Refund amount {refund_amount} exceeds deposit {deposit_amount}; capping"
            )
            return deposit_amount
        return refund_amount
