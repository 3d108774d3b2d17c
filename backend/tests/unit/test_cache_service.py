"""Cache behaviour with the in-memory store and with a failing Redis client."""

from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from slotwise.schemas.availability import TimeSlot
from slotwise.services.cache_service import (
    CacheKeyBuilder,
    CacheService,
    CircuitBreaker,
    CircuitState,
)
from slotwise.services.slot_cache import SlotCache
from tests.factories.redis_doubles import dict_backed_redis, restore


@pytest.fixture
def memory_cache():
    cache = CacheService(redis_client=None, connect=False)
    yield cache
    cache.close()


@pytest.fixture
def broken_redis():
    client = MagicMock()
    client.get.side_effect = RedisConnectionError("connection refused")
    client.setex.side_effect = RedisConnectionError("connection refused")
    client.delete.side_effect = RedisConnectionError("connection refused")
    client.scan_iter.side_effect = RedisConnectionError("connection refused")
    return client


class TestKeyBuilder:
    def test_slot_key(self):
        assert CacheKeyBuilder.build("slot", "acme", date(2030, 6, 3), 60) == "slots:acme:2030-06-03:60"

    def test_unknown_prefix_kept(self):
        assert CacheKeyBuilder.build("custom", "a") == "custom:a"


class TestMemoryCache:
    def test_set_get_delete(self, memory_cache):
        assert memory_cache.set("k", {"a": 1}, ttl=60)
        assert memory_cache.get("k") == {"a": 1}
        assert memory_cache.delete("k")
        assert memory_cache.get("k") is None

    def test_stored_value_is_a_copy(self, memory_cache):
        value = {"a": [1]}
        memory_cache.set("k", value, ttl=60)
        value["a"].append(2)
        assert memory_cache.get("k") == {"a": [1]}

    def test_delete_pattern(self, memory_cache):
        memory_cache.set("slots:acme:2030-06-03:60", [], ttl=60)
        memory_cache.set("slots:acme:2030-06-04:60", [], ttl=60)
        memory_cache.set("slots:other:2030-06-03:60", [], ttl=60)

        assert memory_cache.delete_pattern("slots:acme:*") == 2
        assert memory_cache.get("slots:other:2030-06-03:60") == []

    def test_stats(self, memory_cache):
        memory_cache.set("k", 1, ttl=60)
        memory_cache.get("k")
        memory_cache.get("missing")

        stats = memory_cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["backend"] == "memory"


class TestRedisDegradation:
    def test_get_failure_is_a_miss(self, broken_redis):
        cache = CacheService(redis_client=broken_redis)
        assert cache.get("k") is None
        assert cache.get_stats()["errors"] == 1

    def test_set_failure_returns_false(self, broken_redis):
        cache = CacheService(redis_client=broken_redis)
        assert cache.set("k", [1], ttl=60) is False

    def test_delete_pattern_failure_is_reported(self, broken_redis):
        cache = CacheService(redis_client=broken_redis)

        assert cache.delete_pattern("slots:acme:*") is None
        assert cache.pending_invalidations == ["slots:acme:*"]
        assert cache.get_stats()["pending_invalidations"] == 1

    def test_circuit_opens_and_skips_redis(self, broken_redis):
        cache = CacheService(redis_client=broken_redis)
        threshold = cache.circuit_breaker.failure_threshold

        for _ in range(threshold):
            assert cache.get("k") is None
        assert cache.circuit_breaker.state == CircuitState.OPEN

        calls_before = broken_redis.get.call_count
        assert cache.get("k") is None
        assert broken_redis.get.call_count == calls_before

    def test_healthy_redis_round_trip(self):
        client = MagicMock()
        client.get.return_value = '[{"start": "a", "end": "b", "available": true}]'
        cache = CacheService(redis_client=client)

        assert cache.set("k", [1], ttl=30)
        client.setex.assert_called_once_with("k", 30, "[1]")
        assert cache.get("k") == [{"start": "a", "end": "b", "available": True}]


class TestCircuitBreaker:
    def test_failures_below_threshold_propagate(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        def failing():
            raise RedisConnectionError("down")

        with pytest.raises(RedisConnectionError):
            breaker.call(failing)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.call(failing) is None
        assert breaker.state == CircuitState.OPEN

    def test_half_open_call_recovers(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)

        def failing():
            raise RedisConnectionError("down")

        breaker.call(failing)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED


class TestSlotCache:
    def test_put_and_get_slots(self, memory_cache):
        slot_cache = SlotCache(memory_cache)
        slots = [TimeSlot(start="2030-06-03T09:00:00+00:00", end="2030-06-03T10:00:00+00:00", available=True)]

        slot_cache.put("acme", date(2030, 6, 3), 60, slots)

        assert slot_cache.get("acme", date(2030, 6, 3), 60) == slots
        assert slot_cache.get("acme", date(2030, 6, 3), 30) is None

    def test_malformed_entry_is_discarded(self, memory_cache):
        slot_cache = SlotCache(memory_cache)
        memory_cache.set(SlotCache.key("acme", date(2030, 6, 3), 60), [{"bogus": 1}], ttl=60)

        assert slot_cache.get("acme", date(2030, 6, 3), 60) is None
        assert memory_cache.get(SlotCache.key("acme", date(2030, 6, 3), 60)) is None

    def test_invalidate_all_drops_every_date(self, memory_cache):
        slot_cache = SlotCache(memory_cache)
        slot_cache.put("acme", date(2030, 6, 3), 60, [])
        slot_cache.put("acme", date(2030, 6, 4), 30, [])

        assert slot_cache.invalidate_all("acme") == 2
        assert slot_cache.get("acme", date(2030, 6, 4), 30) is None


class TestPendingInvalidation:
    KEY = "slots:acme:2030-06-03:60"

    @pytest.fixture
    def flaky(self):
        client, store = dict_backed_redis()
        cache = CacheService(redis_client=client)
        cache.set(self.KEY, ["stale"], ttl=300)
        client.scan_iter.side_effect = RedisConnectionError("blip")
        assert cache.delete_pattern("slots:acme:*") is None
        return cache, client, store

    def test_unconfirmed_keys_are_bypassed_while_store_fails(self, flaky):
        cache, client, store = flaky

        assert cache.get(self.KEY) is None
        assert cache.set(self.KEY, ["fresh"], ttl=300) is False
        assert store[self.KEY] == '["stale"]'
        assert cache.pending_invalidations == ["slots:acme:*"]

    def test_retry_after_recovery_drops_stale_entry(self, flaky):
        cache, client, store = flaky
        restore(client, "scan_iter")

        assert cache.get(self.KEY) is None
        assert self.KEY not in store
        assert cache.pending_invalidations == []

        assert cache.set(self.KEY, ["fresh"], ttl=300)
        assert cache.get(self.KEY) == ["fresh"]

    def test_other_keys_are_unaffected(self, flaky):
        cache, client, store = flaky

        assert cache.set("slots:other:2030-06-03:60", [1], ttl=300)
        assert cache.get("slots:other:2030-06-03:60") == [1]

    def test_pending_pattern_lapses_once_entries_expired(self, flaky):
        cache, client, store = flaky
        cache._pending_invalidations["slots:acme:*"] = datetime.now() - timedelta(seconds=1)

        assert cache.get(self.KEY) == ["stale"]
        assert cache.pending_invalidations == []

    def test_slot_cache_reports_failed_invalidation(self):
        client, store = dict_backed_redis()
        client.scan_iter.side_effect = RedisConnectionError("blip")
        slot_cache = SlotCache(CacheService(redis_client=client))

        assert slot_cache.invalidate_all("acme") is None
