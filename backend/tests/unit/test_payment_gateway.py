from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from slotwise.core.exceptions import PaymentGatewayError
from slotwise.services.payment_gateway import NullPaymentGateway, StripePaymentGateway


def _booking(**overrides):
    values = {
        "id": "bk_1",
        "provider_id": "prov_1",
        "service_id": "svc_1",
        "customer_email": "casey@example.com",
        "deposit_amount": 5000,
        "flex_pass_fee": 1500,
        "payment_intent_id": "pi_123",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestNullPaymentGateway:
    def test_records_capture_including_flex_pass(self):
        gateway = NullPaymentGateway()
        handle = gateway.request_deposit_capture(_booking())

        assert handle.payment_intent_id.startswith("pi_null_")
        assert gateway.calls[0].action == "capture"
        assert gateway.calls[0].amount == 6500

    def test_records_refunds(self):
        gateway = NullPaymentGateway()
        gateway.request_refund(_booking(), 2000, "late_cancellation", {"booking_status": "cancelled"})

        refunds = gateway.refunds()
        assert len(refunds) == 1
        assert refunds[0].amount == 2000
        assert refunds[0].metadata == {"booking_status": "cancelled"}

    def test_simulated_failures(self):
        gateway = NullPaymentGateway()
        gateway.fail_refunds = True
        gateway.fail_captures = True

        with pytest.raises(PaymentGatewayError):
            gateway.request_refund(_booking(), 100, "x")
        with pytest.raises(PaymentGatewayError):
            gateway.request_deposit_capture(_booking())
        assert gateway.calls == []


class TestStripePaymentGateway:
    def test_capture_creates_payment_intent(self):
        gateway = StripePaymentGateway("sk_test_123", currency="aud")
        intent = SimpleNamespace(id="pi_abc", status="requires_payment_method", client_secret="sec")

        with patch.object(stripe.PaymentIntent, "create", return_value=intent) as create:
            handle = gateway.request_deposit_capture(_booking())

        assert handle.payment_intent_id == "pi_abc"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 6500
        assert kwargs["currency"] == "aud"
        assert kwargs["idempotency_key"] == "deposit:bk_1"

    def test_stripe_error_becomes_gateway_error(self):
        gateway = StripePaymentGateway("sk_test_123")

        with patch.object(stripe.Refund, "create", side_effect=stripe.StripeError("declined")):
            with pytest.raises(PaymentGatewayError, match="Failed to request refund"):
                gateway.request_refund(_booking(), 2000, "late_cancellation")

    def test_refund_requires_payment_intent(self):
        gateway = StripePaymentGateway("sk_test_123")
        with pytest.raises(PaymentGatewayError):
            gateway.request_refund(_booking(payment_intent_id=None), 2000, "x")
