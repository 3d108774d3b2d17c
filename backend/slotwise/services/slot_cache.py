# backend/slotwise/services/slot_cache.py
"""
Slot Cache for Slotwise

Short-lived materialized view of generated slot sequences, keyed by
(provider slug, date, duration). Only the public "what's available" read
path uses it; booking admission always checks live data.

Invalidation is coarse: any change to a provider's rules or blocked periods
drops every cached entry of that provider.
"""

from datetime import date
import logging
from typing import List, Optional

from pydantic import ValidationError

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.availability import TimeSlot
from .cache_service import CacheKeyBuilder, CacheService

logger = logging.getLogger(__name__)


class SlotCache:
    """Typed facade over CacheService for slot sequences."""

    def __init__(self, cache: CacheService, ttl_seconds: Optional[int] = None):
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.slot_cache_ttl_seconds

    @staticmethod
    def key(provider_slug: str, target_date: date, duration: int) -> str:
        return CacheKeyBuilder.build("slot", provider_slug, target_date, duration)

    @staticmethod
    def provider_pattern(provider_slug: str) -> str:
        return CacheKeyBuilder.build("slot", provider_slug, "*")

    def get(self, provider_slug: str, target_date: date, duration: int) -> Optional[List[TimeSlot]]:
        """Cached slots, or None on a miss (including any cache fault)."""
        raw = self.cache.get(self.key(provider_slug, target_date, duration))
        if raw is None:
            prometheus_metrics.record_slot_cache(hit=False)
            return None

        try:
            slots = [TimeSlot.model_validate(item) for item in raw]
        except (TypeError, ValidationError) as e:
            logger.warning(f"Discarding malformed slot cache entry for {provider_slug}: {e}")
            self.cache.delete(self.key(provider_slug, target_date, duration))
            prometheus_metrics.record_slot_cache(hit=False)
            return None

        prometheus_metrics.record_slot_cache(hit=True)
        return slots

    def put(
        self,
        provider_slug: str,
        target_date: date,
        duration: int,
        slots: List[TimeSlot],
        ttl: Optional[int] = None,
    ) -> bool:
        payload = [slot.model_dump() for slot in slots]
        return self.cache.set(
            self.key(provider_slug, target_date, duration),
            payload,
            ttl=ttl or self.ttl_seconds,
        )

    def invalidate_all(self, provider_slug: str) -> Optional[int]:
        """
        Drop every cached slot sequence of the provider.

        Returns the number of entries removed, or None when the store could not
        confirm the deletion. The cache then bypasses the provider's entries
        until a retry succeeds.
        """
        removed = self.cache.delete_pattern(self.provider_pattern(provider_slug))
        prometheus_metrics.record_slot_cache_invalidation()
        if removed is None:
            logger.warning(f"Slot cache invalidation for {provider_slug} pending")
        else:
            logger.debug(f"Invalidated {removed} slot cache entries for {provider_slug}")
        return removed
