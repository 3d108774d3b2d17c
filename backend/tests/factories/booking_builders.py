"""Builders for booking requests and bookings in a known lifecycle state."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Optional

from slotwise.models import Booking, Provider, Service
from slotwise.schemas.booking import BookingCreate
from slotwise.services.booking_service import BookingService

# Saturday; every booking below is created "now" and lies in the future
NOW = datetime(2030, 6, 1, 0, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 6, 3)
TUESDAY = date(2030, 6, 4)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant on ``day``."""
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def booking_request(
    provider: Provider,
    service: Service,
    start: datetime,
    **overrides: Any,
) -> BookingCreate:
    values: dict[str, Any] = {
        "provider_id": provider.id,
        "service_id": service.id,
        "customer_name": "Casey Customer",
        "customer_email": "casey@example.com",
        "customer_phone": "+61 400 000 000",
        "booking_date": start,
    }
    values.update(overrides)
    return BookingCreate(**values)


def create_booking(
    booking_service: BookingService,
    provider: Provider,
    service: Service,
    start: datetime,
    *,
    confirm: bool = False,
    now: Optional[datetime] = None,
    **overrides: Any,
) -> Booking:
    """Admit a booking and optionally confirm its deposit."""
    booking = booking_service.create_booking(
        booking_request(provider, service, start, **overrides), now=now or NOW
    )
    if confirm:
        booking = booking_service.confirm_booking(
            booking.id, charge_id=f"ch_{booking.id}", now=now or NOW
        )
    return booking
