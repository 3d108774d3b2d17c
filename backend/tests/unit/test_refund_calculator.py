"""Refund rules evaluated against a booking's policy snapshot."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from slotwise.core.exceptions import ValidationException
from slotwise.services.refund_calculator import RefundCalculator, RefundReason

START = datetime(2030, 6, 3, 13, tzinfo=timezone.utc)


def _policy(**overrides):
    payload = {
        "schema_version": 1,
        "service_id": "svc",
        "service_name": "Standard clean",
        "deposit_amount": 5000,
        "cancellation_window_hours": 24,
        "minimum_cancellation_hours": 2,
        "late_cancellation_fee": 2000,
        "no_show_fee": 3000,
        "allow_partial_refunds": True,
        "auto_refund_on_cancel": True,
    }
    payload.update(overrides)
    return payload


def _booking(policy=None, **overrides):
    values = {
        "id": "booking-1",
        "booking_date": START,
        "deposit_amount": 5000,
        "deposit_status": "paid",
        "flex_pass_purchased": False,
        "policy_snapshot": _policy() if policy is None else policy,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def calculator():
    return RefundCalculator()


class TestCalculateRefund:
    def test_outside_window_is_full_refund(self, calculator):
        result = calculator.calculate_refund(_booking(), START - timedelta(hours=48))

        assert result.refund_amount == 5000
        assert result.fee_charged == 0
        assert result.reason == RefundReason.WITHIN_WINDOW
        assert result.hours_until_booking == 48

    def test_exactly_at_window_is_full_refund(self, calculator):
        result = calculator.calculate_refund(_booking(), START - timedelta(hours=24))
        assert result.reason == RefundReason.WITHIN_WINDOW

    def test_late_cancellation_charges_fee(self, calculator):
        result = calculator.calculate_refund(_booking(), START - timedelta(hours=10))

        assert result.refund_amount == 3000
        assert result.fee_charged == 2000
        assert result.reason == RefundReason.LATE_CANCELLATION
        assert "$20.00" in result.explanation

    def test_late_fee_larger_than_deposit_keeps_deposit(self, calculator):
        booking = _booking(_policy(late_cancellation_fee=9000))
        result = calculator.calculate_refund(booking, START - timedelta(hours=10))

        assert result.refund_amount == 0
        assert result.fee_charged == 5000

    def test_inside_minimum_notice_keeps_deposit(self, calculator):
        result = calculator.calculate_refund(_booking(), START - timedelta(minutes=90))

        assert result.refund_amount == 0
        assert result.fee_charged == 5000
        assert result.reason == RefundReason.NO_REFUND_TOO_LATE

    def test_no_partial_refunds_inside_window(self, calculator):
        booking = _booking(_policy(allow_partial_refunds=False))
        result = calculator.calculate_refund(booking, START - timedelta(hours=10))

        assert result.refund_amount == 0
        assert result.reason == RefundReason.NO_REFUND_POLICY

    def test_flex_pass_overrides_timing(self, calculator):
        booking = _booking(flex_pass_purchased=True)
        result = calculator.calculate_refund(booking, START - timedelta(minutes=30))

        assert result.refund_amount == 5000
        assert result.reason == RefundReason.FLEX_PASS_PROTECTION

    def test_missing_policy_keeps_deposit(self, calculator):
        result = calculator.calculate_refund(_booking(policy={}), START - timedelta(hours=48))

        assert result.refund_amount == 0
        assert result.fee_charged == 5000
        assert result.reason == RefundReason.NO_REFUND_POLICY
        assert result.policy_used is None

    def test_unreadable_policy_treated_as_missing(self, calculator):
        booking = _booking(policy={"schema_version": 99, "service_id": "s", "service_name": "n"})
        result = calculator.calculate_refund(booking, START - timedelta(hours=48))
        assert result.reason == RefundReason.NO_REFUND_POLICY

    def test_already_refunded(self, calculator):
        booking = _booking(deposit_status="refunded")
        result = calculator.calculate_refund(booking, START - timedelta(hours=48))

        assert result.refund_amount == 0
        assert result.reason == RefundReason.ALREADY_REFUNDED

    def test_non_positive_deposit_rejected(self, calculator):
        with pytest.raises(ValidationException, match="Invalid deposit amount"):
            calculator.calculate_refund(_booking(deposit_amount=0), START - timedelta(hours=48))

    def test_free_cancellation_window_in_minutes(self, calculator):
        """Created at T, cancelled at T+10m, starts at T+200m, free if >120m ahead."""
        created = START - timedelta(minutes=200)
        booking = _booking(_policy(cancellation_window_hours=2, minimum_cancellation_hours=0))

        result = calculator.calculate_refund(booking, created + timedelta(minutes=10))

        assert result.refund_amount == 5000
        assert result.fee_charged == 0

    def test_result_payload(self, calculator):
        payload = calculator.calculate_refund(_booking(), START - timedelta(hours=10)).to_payload()
        assert payload["reason"] == "late_cancellation"
        assert payload["policy_used"]["late_cancellation_fee"] == 2000


class TestNoShowFee:
    def test_snapshot_fee(self, calculator):
        assert calculator.calculate_no_show_fee(_booking()) == 3000

    def test_fee_capped_at_deposit(self, calculator):
        assert calculator.calculate_no_show_fee(_booking(_policy(no_show_fee=8000))) == 5000

    def test_without_fee_keeps_whole_deposit(self, calculator):
        assert calculator.calculate_no_show_fee(_booking(_policy(no_show_fee=None))) == 5000


class TestHelpers:
    def test_flex_pass_split(self):
        split = RefundCalculator.calculate_flex_pass_split(1500, 60)
        assert (split.platform_amount, split.provider_amount) == (900, 600)

    def test_flex_pass_split_rejects_bad_share(self):
        with pytest.raises(ValidationException):
            RefundCalculator.calculate_flex_pass_split(1500, 120)

    @pytest.mark.parametrize("refund, expected", [(-10, 0), (2500, 2500), (9000, 5000)])
    def test_validate_refund_amount_clamps(self, refund, expected):
        assert RefundCalculator.validate_refund_amount(refund, 5000) == expected
