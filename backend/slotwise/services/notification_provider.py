# backend/slotwise/services/notification_provider.py
"""
Notification provider used by the outbox dispatcher.

Delivery and templating live outside the engine; this provider hands the
event to the log stream, which is where an email/SMS integration hooks in.
A test-only environment flag (`NOTIFICATION_PROVIDER_RAISE_ON`) triggers
transient failures for matching event types or idempotency keys.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class NotificationProviderTemporaryError(RuntimeError):
    """Transient provider failure; the dispatcher retries with backoff."""


def _should_raise(event_type: str, idempotency_key: str) -> bool:
    raw = os.getenv("NOTIFICATION_PROVIDER_RAISE_ON")
    if not raw:
        return False

    tokens = {token.strip() for token in raw.split(",") if token.strip()}
    return "*" in tokens or event_type in tokens or idempotency_key in tokens


@dataclass(frozen=True)
class NotificationDispatchResult:
    idempotency_key: str
    event_type: str
    recipients: tuple[str, ...]


class NotificationProvider:
    """
    Usage:
        provider = NotificationProvider()
        provider.send(event_type="booking.confirmed", payload={...}, idempotency_key="...")
    """

    def send(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> NotificationDispatchResult:
        if not idempotency_key:
            raise ValueError("idempotency_key is required for notification dispatch")

        if _should_raise(event_type, idempotency_key):
            logger.warning("Simulating provider failure for %s (%s)", event_type, idempotency_key)
            raise NotificationProviderTemporaryError(
                f"Simulated transient failure for {event_type}"
            )

        payload = payload or {}
        recipients = tuple(payload.get("recipients") or ())
        logger.info(
            "Dispatching notification %s key=%s recipients=%s payload=%s",
            event_type,
            idempotency_key,
            ",".join(recipients),
            json.dumps(payload, sort_keys=True, default=str)[:500],
        )
        return NotificationDispatchResult(
            idempotency_key=idempotency_key,
            event_type=event_type,
            recipients=recipients,
        )
