"""
Timezone utilities for Slotwise.

Provides provider-based timezone support. Availability rules are wall-clock
times in the provider's zone; everything persisted is UTC.
"""

from datetime import date, datetime, time, timezone
from typing import TYPE_CHECKING, Union

import pytz

from .config import settings

if TYPE_CHECKING:
    from slotwise.models.provider import Provider


def get_timezone(name: Union[str, None]) -> pytz.BaseTzInfo:
    """Resolve an IANA name, falling back to the configured default zone."""
    return pytz.timezone(name or settings.default_timezone)


def get_provider_timezone(provider: "Provider") -> pytz.BaseTzInfo:
    """
    Get provider's timezone preference.

    Args:
        provider: Provider object (always has timezone field)

    Returns:
        Provider's timezone as pytz timezone object
    """
    return get_timezone(provider.timezone)


def local_to_utc(target_date: date, wall_clock: time, tz: pytz.BaseTzInfo) -> datetime:
    """
    Anchor a wall-clock time on a date in ``tz`` and return the UTC instant.

    Nonexistent or ambiguous local times (DST transitions) resolve the way
    pytz does with ``is_dst=False``.
    """
    naive = datetime.combine(target_date, wall_clock)
    return tz.localize(naive, is_dst=False).astimezone(timezone.utc)


def utc_to_local(dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def local_day_bounds_utc(target_date: date, tz: pytz.BaseTzInfo) -> tuple[datetime, datetime]:
    """Return the UTC instants bounding ``target_date`` in ``tz`` as a half-open range."""
    start = tz.localize(datetime.combine(target_date, time.min), is_dst=False)
    next_day = date.fromordinal(target_date.toordinal() + 1)
    end = tz.localize(datetime.combine(next_day, time.min), is_dst=False)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
