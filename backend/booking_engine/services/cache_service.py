# backend/booking_engine/services/cache_service.py
"""
Cache service for computed availability.

Centralizes key construction, serialization, TTL tiers and invalidation.
Entries are indexed under tags (for example ``tag:location:<id>``) so a
single location can be invalidated without scanning or flushing the whole
keyspace. Redis is used when configured; otherwise an in-process dictionary
with the same semantics is used.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
import fnmatch
import hashlib
import json
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar, Union

import redis
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService

logger = logging.getLogger(__name__)


T = TypeVar("T")

Tag = Tuple[str, str]


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker for cache resilience.

    Prevents cascading failures when Redis is unavailable.
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
        """Get current circuit state."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time:
                time_since_failure = (datetime.now() - self._last_failure_time).total_seconds()
                if time_since_failure >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
            return self._state

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Execute function with circuit breaker protection.

        Returns None when the circuit is open. Failures below the threshold
        propagate to the caller.
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

            if self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker opened after {self._failure_count} failures")


class CacheKeyBuilder:
    """Standardized cache key generation."""

    PREFIXES = {
        "venue_slots": "vslots",
        "service_slots": "sslots",
        "venue_calendar": "vcal",
        "capacity": "cap",
        "tag": "tag",
    }

    @staticmethod
    def build(*parts: Union[str, int, date, time]) -> str:
        """
        Build a cache key from parts.

        Examples:
            build('venue_slots', 'loc1', date(2024, 1, 1)) -> 'vslots:loc1:2024-01-01'
        """
        formatted_parts = []

        for part in parts:
            if isinstance(part, (date, time)):
                formatted_parts.append(part.isoformat())
            else:
                formatted_parts.append(str(part))

        if parts:
            first = parts[0]
            if isinstance(first, str) and first in CacheKeyBuilder.PREFIXES:
                formatted_parts[0] = CacheKeyBuilder.PREFIXES[first]

        return ":".join(formatted_parts)

    @staticmethod
    def hash_complex_key(data: Dict[str, Any]) -> str:
        """Generate a short stable hash for option dictionaries."""
        sorted_data = json.dumps(data, sort_keys=True, default=str)
        return hashlib.md5(sorted_data.encode()).hexdigest()[:12]

    @staticmethod
    def tag_key(kind: str, value: str) -> str:
        return CacheKeyBuilder.build("tag", kind, value)


class CacheService(BaseService):
    """
    Caching service with tag-indexed invalidation.

    Features:
    - JSON serialization (identical for Redis and the in-memory fallback)
    - TTL tiers
    - Tag index per entry for targeted invalidation
    - Circuit breaker around Redis
    """

    # TTL Tiers (in seconds)
    TTL_TIERS = {
        "hot": 300,  # 5 minutes - slot listings
        "warm": 600,  # 10 minutes - venue slot listings
        "cold": 3600,
    }

    def __init__(
        self,
        db: Optional[Session] = None,
        redis_client: Optional[Redis] = None,
        redis_url: Optional[str] = None,
    ):
        super().__init__(db)  # type: ignore[arg-type]
        self.logger = logging.getLogger(__name__)

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5, recovery_timeout=60, expected_exception=RedisError
        )
        self.key_builder = CacheKeyBuilder()

        # In-memory fallback
        self._lock = threading.RLock()
        self._memory_cache: Dict[str, Any] = {}
        self._memory_expiry: Dict[str, datetime] = {}
        self._memory_tags: Dict[str, Set[str]] = {}

        self.redis: Optional[Redis] = redis_client
        if self.redis is None:
            self._setup_redis_connection(redis_url if redis_url is not None else settings.redis_url)

        self._stats: Dict[str, int] = self._initialize_stats()

    def _setup_redis_connection(self, url: Optional[str]) -> None:
        """Connect to Redis when a URL is configured; otherwise stay in memory."""
        if not url:
            logger.info("No Redis URL configured, using in-memory cache")
            return
        try:
            client = redis.from_url(
                url,
                decode_responses=True,
                socket_keepalive=True,
                socket_connect_timeout=5,
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
            "tag_invalidations": 0,
        }

    @property
    def _redis_usable(self) -> bool:
        return self.redis is not None and self.circuit_breaker.state != CircuitState.OPEN

    # Core Cache Operations

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        """Get value from cache; None on miss."""
        redis_client = self.redis

        def _get_from_redis() -> Optional[Any]:
            assert redis_client is not None
            value = redis_client.get(key)
            if value is not None:
                return json.loads(value)
            return None

        try:
            if redis_client is not None:
                value = (
                    self.circuit_breaker.call(_get_from_redis) if self._redis_usable else None
                )
            else:
                value = self._memory_get(key)
        except RedisError as e:
            logger.error(f"Cache get error for key {key}: {e}")
            self._stats["errors"] += 1
            value = None

        if value is None:
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return value

    @BaseService.measure_operation("cache_set")
    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tier: str = "hot",
        tags: Iterable[Tag] = (),
    ) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key
            value: Value to serialize
            ttl: Seconds to live (defaults to the tier's TTL)
            tier: TTL tier name
            tags: (kind, value) pairs under which the key is indexed
        """
        if ttl is None:
            ttl = self.TTL_TIERS.get(tier, self.TTL_TIERS["hot"])
        serialized = json.dumps(value, default=str)
        tag_keys = [CacheKeyBuilder.tag_key(kind, tag_value) for kind, tag_value in tags]
        redis_client = self.redis

        def _set_in_redis() -> bool:
            assert redis_client is not None
            pipe = redis_client.pipeline()
            pipe.setex(key, ttl, serialized)
            for tag_key in tag_keys:
                pipe.sadd(tag_key, key)
                pipe.expire(tag_key, ttl)
            pipe.execute()
            return True

        try:
            if redis_client is not None:
                stored = bool(self._redis_usable and self.circuit_breaker.call(_set_in_redis))
            else:
                self._memory_set(key, json.loads(serialized), ttl, tag_keys)
                stored = True
        except RedisError as e:
            logger.error(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

        if stored:
            self._stats["sets"] += 1
        return stored

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        """Delete a key."""
        redis_client = self.redis

        def _delete_from_redis() -> bool:
            assert redis_client is not None
            return bool(redis_client.delete(key))

        try:
            if redis_client is not None:
                deleted = bool(self._redis_usable and self.circuit_breaker.call(_delete_from_redis))
            else:
                deleted = self._memory_delete(key)
        except RedisError as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

        if deleted:
            self._stats["deletes"] += 1
        return deleted

    @BaseService.measure_operation("cache_invalidate_tag")
    def invalidate_tag(self, kind: str, value: str) -> int:
        """
        Delete every key indexed under a tag, and the tag itself.

        Returns:
            Number of cached entries removed
        """
        tag_key = CacheKeyBuilder.tag_key(kind, value)
        redis_client = self.redis

        def _invalidate_in_redis() -> int:
            assert redis_client is not None
            members = list(redis_client.smembers(tag_key))
            removed = redis_client.delete(*members) if members else 0
            redis_client.delete(tag_key)
            return int(removed)

        try:
            if redis_client is not None:
                if self._redis_usable:
                    count = self.circuit_breaker.call(_invalidate_in_redis) or 0
                else:
                    # Entries cannot be removed while the circuit is open; they expire by TTL.
                    logger.warning(f"Cache unavailable, could not invalidate {tag_key}")
                    count = 0
            else:
                count = self._memory_invalidate_tag(tag_key)
        except RedisError as e:
            logger.error(f"Cache tag invalidation error for {tag_key}: {e}")
            self._stats["errors"] += 1
            raise

        self._stats["tag_invalidations"] += 1
        prometheus_metrics.record_cache_invalidation(kind, count)
        self._stats["deletes"] += count
        logger.debug(f"Invalidated {count} keys tagged {tag_key}")
        return count

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern (administrative use)."""
        count = 0
        if self.redis is not None:
            for key in self.redis.scan_iter(match=pattern):
                if self.redis.delete(key):
                    count += 1
        else:
            with self._lock:
                for key in [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]:
                    self._memory_delete(key)
                    count += 1
        self._stats["deletes"] += count
        logger.info(f"Deleted {count} keys matching pattern: {pattern}")
        return count

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[int] = None,
        tags: Iterable[Tag] = (),
    ) -> Any:
        """Return the cached value for ``key`` or compute, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.set(key, value, ttl=ttl, tags=tags)
        return value

    # In-memory backend

    def _memory_get(self, key: str) -> Optional[Any]:
        with self._lock:
            if key not in self._memory_cache:
                return None
            expires_at = self._memory_expiry.get(key)
            if expires_at is not None and datetime.now() >= expires_at:
                self._memory_delete(key)
                return None
            return self._memory_cache[key]

    def _memory_set(self, key: str, value: Any, ttl: int, tag_keys: List[str]) -> None:
        with self._lock:
            now = datetime.now()
            self._memory_prune(now)
            self._memory_cache[key] = value
            self._memory_expiry[key] = now + timedelta(seconds=ttl)
            for tag_key in tag_keys:
                self._memory_tags.setdefault(tag_key, set()).add(key)

    def _memory_prune(self, now: datetime) -> int:
        """Drop expired entries and tag members that no longer point at a live key."""
        with self._lock:
            expired = [key for key, expires_at in self._memory_expiry.items() if expires_at <= now]
            for key in expired:
                self._memory_delete(key)
            for tag_key in list(self._memory_tags):
                members = self._memory_tags[tag_key]
                members.intersection_update(self._memory_cache)
                if not members:
                    del self._memory_tags[tag_key]
            return len(expired)

    def _memory_delete(self, key: str) -> bool:
        with self._lock:
            existed = key in self._memory_cache
            self._memory_cache.pop(key, None)
            self._memory_expiry.pop(key, None)
            return existed

    def _memory_invalidate_tag(self, tag_key: str) -> int:
        with self._lock:
            members = self._memory_tags.pop(tag_key, set())
            return sum(1 for key in members if self._memory_delete(key))

    # Monitoring

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics including hit rate and circuit breaker state."""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total_requests * 100) if total_requests > 0 else 0
        return {
            **self._stats,
            "hit_rate": f"{hit_rate:.2f}%",
            "total_requests": total_requests,
            "backend": "redis" if self.redis is not None else "memory",
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker._failure_count,
                "threshold": self.circuit_breaker.failure_threshold,
            },
        }

    def reset_stats(self) -> None:
        self._stats = self._initialize_stats()
