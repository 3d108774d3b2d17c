from datetime import datetime, timezone
import json
from types import SimpleNamespace

import pytest

from slotwise.services.policy_snapshot import (
    CURRENT_SCHEMA_VERSION,
    InvalidPolicySnapshotError,
    PolicySnapshot,
    is_valid_policy_snapshot,
)

CAPTURED_AT = datetime(2030, 6, 1, tzinfo=timezone.utc)


def _service(**overrides):
    values = {
        "id": "01J0SERVICE0000000000000000",
        "name": "Standard clean",
        "updated_at": datetime(2030, 5, 1, tzinfo=timezone.utc),
        "deposit_amount": 5000,
        "deposit_type": "fixed",
        "full_price": 15000,
        "cancellation_window_hours": 24,
        "minimum_cancellation_hours": 2,
        "late_cancellation_fee": 2000,
        "no_show_fee": 3000,
        "allow_partial_refunds": True,
        "auto_refund_on_cancel": True,
        "flex_pass_enabled": True,
        "flex_pass_price": 1500,
        "flex_pass_revenue_share_percent": 60,
        "flex_pass_rules": None,
        "protection_addons": json.dumps([{"name": "weather", "price": 500}]),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestCapture:
    def test_from_service_copies_policy(self):
        snapshot = PolicySnapshot.from_service(_service(), CAPTURED_AT)

        assert snapshot.schema_version == CURRENT_SCHEMA_VERSION
        assert snapshot.deposit_amount == 5000
        assert snapshot.late_cancellation_fee == 2000
        assert snapshot.no_show_fee == 3000
        assert snapshot.snapshot_created_at == CAPTURED_AT
        assert snapshot.protection_addons == [{"name": "weather", "price": 500}]

    def test_missing_policy_fields_take_defaults(self):
        snapshot = PolicySnapshot.from_service(
            _service(cancellation_window_hours=None, minimum_cancellation_hours=None), CAPTURED_AT
        )
        assert snapshot.cancellation_window_hours == 24
        assert snapshot.minimum_cancellation_hours == 2

    def test_payload_round_trip(self):
        snapshot = PolicySnapshot.from_service(_service(), CAPTURED_AT)
        assert PolicySnapshot.from_payload(snapshot.to_payload()) == snapshot

    def test_payload_accepts_json_string(self):
        payload = PolicySnapshot.from_service(_service(), CAPTURED_AT).to_payload()
        restored = PolicySnapshot.from_payload(json.dumps(payload))
        assert restored.service_name == "Standard clean"


class TestVersioning:
    def test_legacy_payload_without_version_reads_as_v1(self):
        snapshot = PolicySnapshot.from_payload(
            {"service_id": "svc", "service_name": "Legacy", "deposit_amount": 2500}
        )
        assert snapshot.schema_version == 1
        assert snapshot.cancellation_window_hours == 24
        assert snapshot.auto_refund_on_cancel is True

    def test_newer_version_is_rejected(self):
        with pytest.raises(InvalidPolicySnapshotError, match="Unsupported policy snapshot version"):
            PolicySnapshot.from_payload(
                {
                    "schema_version": CURRENT_SCHEMA_VERSION + 1,
                    "service_id": "svc",
                    "service_name": "Future",
                }
            )

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"service_name": "No id"},
            {"service_id": "svc", "service_name": "x", "deposit_type": "barter"},
            {"service_id": "svc", "service_name": "x", "late_cancellation_fee": -1},
            {"service_id": "svc", "service_name": "x", "flex_pass_revenue_share_percent": 150},
        ],
    )
    def test_invalid_payloads(self, payload):
        assert not is_valid_policy_snapshot(payload)


class TestSummary:
    def test_summary_lists_fees(self):
        snapshot = PolicySnapshot.from_service(_service(), CAPTURED_AT)
        assert snapshot.summary() == (
            "Cancel within 24 hours for full refund. Late cancellation fee: $20.00. "
            "No-show fee: $30.00. Cancellation protection available for $15.00."
        )

    def test_summary_without_fees(self):
        snapshot = PolicySnapshot.from_service(
            _service(late_cancellation_fee=None, no_show_fee=None, flex_pass_enabled=False),
            CAPTURED_AT,
        )
        assert snapshot.summary() == "Cancel within 24 hours for full refund."
