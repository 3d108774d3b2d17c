# backend/slotwise/services/cache_service.py
"""
Cache Service for Slotwise

Key/value cache over Redis with JSON serialization, TTL tiers, glob-pattern
invalidation and a circuit breaker. When no Redis client is configured the
service keeps entries in process memory with the same semantics.

Every cache fault is logged and reported as a miss (or a failed write); the
cache never raises into a caller. A failed pattern invalidation is remembered
and matching keys are bypassed until a retry confirms it.
"""

from datetime import date, datetime, timedelta
from enum import Enum
import fnmatch
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, TypeVar, Union

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from .base import BaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing whether the store recovered


class CircuitBreaker:
    """
    Circuit breaker guarding calls to the cache store.

    After ``failure_threshold`` consecutive failures the circuit opens and
    calls are skipped until ``recovery_timeout`` seconds have passed; the next
    call is then a half-open trial.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type[BaseException] = RedisError,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self._failure_count: int = 0
        self._last_failure_time: Optional[datetime] = None
        self._state: CircuitState = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time:
                elapsed = (datetime.now() - self._last_failure_time).total_seconds()
                if elapsed >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
            return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Execute ``func`` under circuit breaker protection.

        Returns None without calling ``func`` while the circuit is open.
        Failures below the threshold propagate to the caller.
        """
        if self.state == CircuitState.OPEN:
            logger.warning(f"Circuit breaker is OPEN, skipping {func.__name__}")
            return None

        try:
            result = func(*args, **kwargs)
            self._on_success()
            return result
        except self.expected_exception:
            self._on_failure()
            if self.state == CircuitState.CLOSED:
                raise
            return None

    def _on_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker recovered, closing circuit")

    def _on_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now()

            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker opened after {self._failure_count} failures")


class CacheKeyBuilder:
    """Standardized cache key generation."""

    PREFIXES = {
        "slot": "slots",
    }

    @staticmethod
    def build(*parts: Union[str, int, date]) -> str:
        """
        Build a colon-separated cache key.

        Examples:
            build('slot', 'acme', date(2025, 6, 16), 60) -> 'slots:acme:2025-06-16:60'
        """
        formatted_parts = [
            part.isoformat() if isinstance(part, date) else str(part) for part in parts
        ]

        if parts:
            first = parts[0]
            if isinstance(first, str) and first in CacheKeyBuilder.PREFIXES:
                formatted_parts[0] = CacheKeyBuilder.PREFIXES[first]

        return ":".join(formatted_parts)


class CacheService(BaseService):
    """
    Cache client injected into the services that need it.

    Lifecycle: construct once per process (or per test), call ``close()`` on
    shutdown.
    """

    # TTL Tiers (in seconds)
    TTL_TIERS = {
        "hot": 300,  # 5 minutes - public slot queries
        "warm": 3600,  # 1 hour
        "cold": 86400,  # 24 hours
    }

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        *,
        connect: Optional[bool] = None,
    ):
        """
        Args:
            redis_client: Preconfigured client; takes precedence over settings
            connect: Open a Redis connection from ``settings.redis_url`` when no
                client is given. Defaults to ``settings.cache_backend == "redis"``.
        """
        super().__init__(None)  # type: ignore[arg-type]
        self.logger = logging.getLogger(__name__)

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cache_circuit_failure_threshold,
            recovery_timeout=settings.cache_circuit_recovery_seconds,
            expected_exception=RedisError,
        )

        # In-memory store
        self._memory_cache: Dict[str, Any] = {}
        self._memory_expiry: Dict[str, datetime] = {}
        self._memory_lock = threading.Lock()

        # Patterns whose deletion failed, mapped to when their last entry expires anyway
        self._pending_invalidations: Dict[str, datetime] = {}
        self._longest_ttl: int = self.TTL_TIERS["cold"]

        self.redis: Optional[Redis] = redis_client
        if self.redis is None:
            should_connect = settings.cache_backend == "redis" if connect is None else connect
            if should_connect:
                self._setup_redis_connection()

        self._stats: Dict[str, int] = self._initialize_stats()

    def _setup_redis_connection(self) -> None:
        """Connect to Redis, falling back to the in-memory store when unreachable."""
        try:
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_keepalive=True,
                socket_connect_timeout=5,
                socket_timeout=2,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
            self.redis = client
            logger.info("Connected to Redis")
        except (RedisError, ConnectionError) as e:
            logger.warning(f"Redis not available: {e}. Using in-memory fallback.")
            self.redis = None

    def _initialize_stats(self) -> Dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
        }

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    # Core Cache Operations

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        """Cached value for ``key``; None on miss, expiry, open circuit or error."""
        redis_client = self.redis

        def _get_from_redis() -> Optional[Any]:
            assert redis_client is not None
            value = redis_client.get(key)
            if value is not None:
                return json.loads(value)
            return None

        try:
            if self._invalidation_pending(key):
                logger.debug(f"Bypassing {key}: invalidation not yet confirmed")
                self._stats["misses"] += 1
                return None

            if redis_client is not None:
                if self.circuit_breaker.state != CircuitState.OPEN:
                    value = self.circuit_breaker.call(_get_from_redis)
                    if value is not None:
                        self._stats["hits"] += 1
                        return value
            else:
                with self._memory_lock:
                    if key in self._memory_cache:
                        expires_at = self._memory_expiry.get(key)
                        if expires_at is None or datetime.now() < expires_at:
                            self._stats["hits"] += 1
                            return self._memory_cache[key]
                        del self._memory_cache[key]
                        self._memory_expiry.pop(key, None)

            self._stats["misses"] += 1
            return None

        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
            self._stats["errors"] += 1
            return None

    @BaseService.measure_operation("cache_set")
    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tier: str = "warm",
    ) -> bool:
        """Store ``value`` (JSON-serializable) under ``key``; False when the write was skipped."""
        redis_client = self.redis
        if ttl is None:
            ttl = self.TTL_TIERS.get(tier, self.TTL_TIERS["warm"])

        try:
            if self._invalidation_pending(key):
                return False
            if ttl > self._longest_ttl:
                self._longest_ttl = ttl

            serialized = json.dumps(value, default=str)

            def _set_in_redis() -> bool:
                assert redis_client is not None
                redis_client.setex(key, ttl, serialized)
                return True

            if redis_client is not None:
                if self.circuit_breaker.state != CircuitState.OPEN:
                    if self.circuit_breaker.call(_set_in_redis):
                        self._stats["sets"] += 1
                        return True
                return False

            with self._memory_lock:
                # Store the decoded copy so callers can't mutate cached state
                self._memory_cache[key] = json.loads(serialized)
                self._memory_expiry[key] = datetime.now() + timedelta(seconds=ttl)
            self._stats["sets"] += 1
            return True

        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        redis_client = self.redis

        def _delete_from_redis() -> bool:
            assert redis_client is not None
            return bool(redis_client.delete(key))

        try:
            if redis_client is not None:
                if self.circuit_breaker.state != CircuitState.OPEN and self.circuit_breaker.call(
                    _delete_from_redis
                ):
                    self._stats["deletes"] += 1
                    return True
                return False

            with self._memory_lock:
                existed = key in self._memory_cache
                self._memory_cache.pop(key, None)
                self._memory_expiry.pop(key, None)
            if existed:
                self._stats["deletes"] += 1
            return existed

        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> Optional[int]:
        """
        Delete every key matching the glob ``pattern``.

        Returns:
            Number of keys removed, or None when the deletion could not be
            confirmed. In that case the pattern stays pending: reads and writes
            of matching keys retry the deletion first and are bypassed until it
            succeeds or every entry written before the failure has expired.
        """
        count = self._try_delete_pattern(pattern)
        if count is None:
            deadline = datetime.now() + timedelta(seconds=self._longest_ttl)
            with self._memory_lock:
                self._pending_invalidations[pattern] = deadline
            logger.warning(f"Invalidation of {pattern} pending; matching keys bypassed until confirmed")
            return None

        self._stats["deletes"] += count
        logger.info(f"Deleted {count} keys matching pattern: {pattern}")
        return count

    def _try_delete_pattern(self, pattern: str) -> Optional[int]:
        try:
            if self.redis is None:
                return self._delete_pattern_memory(pattern)
            if self.circuit_breaker.state == CircuitState.OPEN:
                return None
            # The breaker returns None when this failure opened the circuit
            return self.circuit_breaker.call(self._delete_pattern_redis, pattern)
        except Exception as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            self._stats["errors"] += 1
            return None

    def _invalidation_pending(self, key: str) -> bool:
        """Whether ``key`` matches a pattern whose deletion is still unconfirmed."""
        if not self._pending_invalidations:
            return False

        now = datetime.now()
        with self._memory_lock:
            for pattern, deadline in list(self._pending_invalidations.items()):
                if deadline <= now:
                    del self._pending_invalidations[pattern]
            matching = [p for p in self._pending_invalidations if fnmatch.fnmatch(key, p)]

        pending = False
        for pattern in matching:
            count = self._try_delete_pattern(pattern)
            if count is None:
                pending = True
                continue
            with self._memory_lock:
                self._pending_invalidations.pop(pattern, None)
            self._stats["deletes"] += count
            logger.info(f"Confirmed pending invalidation of {pattern} ({count} keys)")
        return pending

    @property
    def pending_invalidations(self) -> list[str]:
        with self._memory_lock:
            return sorted(self._pending_invalidations)

    def _delete_pattern_redis(self, pattern: str) -> int:
        """Delete pattern from Redis using SCAN."""
        redis_client = self.redis
        if redis_client is None:
            return 0
        count = 0
        for key in redis_client.scan_iter(match=pattern):
            if redis_client.delete(key):
                count += 1
        return count

    def _delete_pattern_memory(self, pattern: str) -> int:
        with self._memory_lock:
            keys_to_delete = [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]
            for key in keys_to_delete:
                self._memory_cache.pop(key, None)
                self._memory_expiry.pop(key, None)
        return len(keys_to_delete)

    # Monitoring

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics including circuit breaker state."""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total_requests * 100) if total_requests > 0 else 0

        return {
            **self._stats,
            "hit_rate": f"{hit_rate:.2f}%",
            "total_requests": total_requests,
            "backend": self.backend,
            "pending_invalidations": len(self._pending_invalidations),
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker.failure_count,
                "threshold": self.circuit_breaker.failure_threshold,
            },
        }

    def close(self) -> None:
        """Release the Redis connection pool and drop in-memory entries."""
        if self.redis is not None:
            try:
                self.redis.close()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self.redis = None
        with self._memory_lock:
            self._memory_cache.clear()
            self._memory_expiry.clear()
            self._pending_invalidations.clear()

