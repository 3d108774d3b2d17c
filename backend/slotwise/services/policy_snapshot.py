"""
Policy snapshot captured on every booking.

The snapshot is a copy of the service's cancellation policy at booking time.
Refunds and fees are always evaluated against it, never against the live
service, so later policy edits cannot change past bookings.

Payloads carry ``schema_version``. Readers accept every version up to
``CURRENT_SCHEMA_VERSION`` and reject newer ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from slotwise.models.service import Service

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1

DEFAULT_CANCELLATION_WINDOW_HOURS = 24
DEFAULT_MINIMUM_CANCELLATION_HOURS = 2
DEFAULT_FLEX_PASS_REVENUE_SHARE_PERCENT = 60


class InvalidPolicySnapshotError(ValueError):
    """Raised when a stored snapshot cannot be read."""


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _non_negative_int(payload: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = payload.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidPolicySnapshotError(f"{key} must be a number")
    if value < 0:
        raise InvalidPolicySnapshotError(f"{key} must be non-negative")
    return int(value)


def _json_field(value: Any) -> Any:
    """JSON columns may arrive as already-decoded values or as strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            logger.error("Failed to parse JSON policy field; dropping it")
            return None
    return value


def _format_dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


@dataclass(frozen=True)
class PolicySnapshot:
    service_id: str
    service_name: str
    service_version: Optional[datetime]
    snapshot_created_at: datetime

    deposit_amount: int
    deposit_type: str = "fixed"
    full_price: Optional[int] = None

    cancellation_window_hours: int = DEFAULT_CANCELLATION_WINDOW_HOURS
    minimum_cancellation_hours: int = DEFAULT_MINIMUM_CANCELLATION_HOURS
    late_cancellation_fee: Optional[int] = None
    no_show_fee: Optional[int] = None
    allow_partial_refunds: bool = True
    auto_refund_on_cancel: bool = True

    flex_pass_enabled: bool = False
    flex_pass_price: Optional[int] = None
    flex_pass_revenue_share_percent: int = DEFAULT_FLEX_PASS_REVENUE_SHARE_PERCENT
    flex_pass_rules: Optional[Dict[str, Any]] = None
    protection_addons: Optional[List[Dict[str, Any]]] = field(default=None)

    schema_version: int = CURRENT_SCHEMA_VERSION

    @classmethod
    def from_service(cls, service: "Service", now: Optional[datetime] = None) -> "PolicySnapshot":
        """Capture the service's current policy."""
        addons = _json_field(service.protection_addons)
        rules = _json_field(service.flex_pass_rules)

        def _or_default(value: Any, default: Any) -> Any:
            return default if value is None else value

        return cls(
            service_id=service.id,
            service_name=service.name,
            service_version=service.updated_at,
            snapshot_created_at=now or datetime.now(timezone.utc),
            deposit_amount=int(service.deposit_amount),
            deposit_type=service.deposit_type or "fixed",
            full_price=service.full_price,
            cancellation_window_hours=_or_default(
                service.cancellation_window_hours, DEFAULT_CANCELLATION_WINDOW_HOURS
            ),
            minimum_cancellation_hours=_or_default(
                service.minimum_cancellation_hours, DEFAULT_MINIMUM_CANCELLATION_HOURS
            ),
            late_cancellation_fee=service.late_cancellation_fee,
            no_show_fee=service.no_show_fee,
            allow_partial_refunds=_or_default(service.allow_partial_refunds, True),
            auto_refund_on_cancel=_or_default(service.auto_refund_on_cancel, True),
            flex_pass_enabled=_or_default(service.flex_pass_enabled, False),
            flex_pass_price=service.flex_pass_price,
            flex_pass_revenue_share_percent=_or_default(
                service.flex_pass_revenue_share_percent, DEFAULT_FLEX_PASS_REVENUE_SHARE_PERCENT
            ),
            flex_pass_rules=rules if isinstance(rules, dict) else None,
            protection_addons=addons if isinstance(addons, list) else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "service_version": self.service_version.isoformat() if self.service_version else None,
            "snapshot_created_at": self.snapshot_created_at.isoformat(),
            "deposit_amount": self.deposit_amount,
            "deposit_type": self.deposit_type,
            "full_price": self.full_price,
            "cancellation_window_hours": self.cancellation_window_hours,
            "minimum_cancellation_hours": self.minimum_cancellation_hours,
            "late_cancellation_fee": self.late_cancellation_fee,
            "no_show_fee": self.no_show_fee,
            "allow_partial_refunds": self.allow_partial_refunds,
            "auto_refund_on_cancel": self.auto_refund_on_cancel,
            "flex_pass_enabled": self.flex_pass_enabled,
            "flex_pass_price": self.flex_pass_price,
            "flex_pass_revenue_share_percent": self.flex_pass_revenue_share_percent,
            "flex_pass_rules": self.flex_pass_rules,
            "protection_addons": self.protection_addons,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "PolicySnapshot":
        """
        Read a stored snapshot.

        Payloads without ``schema_version`` are treated as version 1; fields
        missing from older payloads take the policy defaults.

        Raises:
            InvalidPolicySnapshotError: unreadable payload or a newer schema version
        """
        payload = _json_field(payload)
        if not isinstance(payload, dict):
            raise InvalidPolicySnapshotError("Policy snapshot must be an object")

        version = payload.get("schema_version", 1)
        if not isinstance(version, int) or version < 1:
            raise InvalidPolicySnapshotError(f"Invalid policy snapshot version: {version!r}")
        if version > CURRENT_SCHEMA_VERSION:
            raise InvalidPolicySnapshotError(
                f"Unsupported policy snapshot version {version} "
                f"(newest supported: {CURRENT_SCHEMA_VERSION})"
            )

        service_id = payload.get("service_id")
        service_name = payload.get("service_name")
        if not service_id or not service_name:
            raise InvalidPolicySnapshotError("Policy snapshot is missing service identification")

        deposit_type = payload.get("deposit_type") or "fixed"
        if deposit_type not in ("fixed", "percentage"):
            raise InvalidPolicySnapshotError(f"Unknown deposit type: {deposit_type}")

        share = _non_negative_int(
            payload, "flex_pass_revenue_share_percent", DEFAULT_FLEX_PASS_REVENUE_SHARE_PERCENT
        )
        if share is None or share > 100:
            raise InvalidPolicySnapshotError("flex_pass_revenue_share_percent must be 0-100")

        try:
            snapshot_created_at = _parse_datetime(payload.get("snapshot_created_at"))
            service_version = _parse_datetime(payload.get("service_version"))
        except ValueError as exc:
            raise InvalidPolicySnapshotError(f"Invalid snapshot timestamp: {exc}") from exc

        return cls(
            schema_version=version,
            service_id=str(service_id),
            service_name=str(service_name),
            service_version=service_version,
            snapshot_created_at=snapshot_created_at or datetime.now(timezone.utc),
            deposit_amount=_non_negative_int(payload, "deposit_amount", 0) or 0,
            deposit_type=deposit_type,
            full_price=_non_negative_int(payload, "full_price", None),
            cancellation_window_hours=_non_negative_int(
                payload, "cancellation_window_hours", DEFAULT_CANCELLATION_WINDOW_HOURS
            )
            or 0,
            minimum_cancellation_hours=_non_negative_int(
                payload, "minimum_cancellation_hours", DEFAULT_MINIMUM_CANCELLATION_HOURS
            )
            or 0,
            late_cancellation_fee=_non_negative_int(payload, "late_cancellation_fee", None),
            no_show_fee=_non_negative_int(payload, "no_show_fee", None),
            allow_partial_refunds=bool(payload.get("allow_partial_refunds", True)),
            auto_refund_on_cancel=bool(payload.get("auto_refund_on_cancel", True)),
            flex_pass_enabled=bool(payload.get("flex_pass_enabled", False)),
            flex_pass_price=_non_negative_int(payload, "flex_pass_price", None),
            flex_pass_revenue_share_percent=share,
            flex_pass_rules=payload.get("flex_pass_rules"),
            protection_addons=payload.get("protection_addons"),
        )

    def summary(self) -> str:
        """Human-readable policy, e.g. for confirmation emails."""
        parts = [f"Cancel within {self.cancellation_window_hours} hours for full refund"]
        if self.late_cancellation_fee:
            parts.append(f"Late cancellation fee: {_format_dollars(self.late_cancellation_fee)}")
        if self.no_show_fee:
            parts.append(f"No-show fee: {_format_dollars(self.no_show_fee)}")
        if self.flex_pass_enabled and self.flex_pass_price:
            parts.append(
                f"Cancellation protection available for {_format_dollars(self.flex_pass_price)}"
            )
        return ". ".join(parts) + "."


def is_valid_policy_snapshot(payload: Any) -> bool:
    try:
        PolicySnapshot.from_payload(payload)
    except InvalidPolicySnapshotError as exc:
        logger.error(f"Policy snapshot validation failed: {exc}")
        return False
    return True
