# backend/tests/unit/services/test_cache_service.py
"""
Unit tests for CacheService.

The in-memory backend is exercised directly; Redis behaviour (tag index,
circuit breaker) is checked against a MagicMock client.
"""

from datetime import date
import json
from unittest.mock import MagicMock

import pytest
from redis.exceptions import RedisError

from booking_engine.services.cache_service import (
    CacheKeyBuilder,
    CacheService,
    CircuitBreaker,
    CircuitState,
)


class TestCacheKeyBuilder:
    def test_prefix_and_date_formatting(self):
        key = CacheKeyBuilder.build("venue_slots", "loc1", date(2024, 1, 1), 240)
        assert key == "vslots:loc1:2024-01-01:240"

    def test_unknown_prefix_is_kept(self):
        assert CacheKeyBuilder.build("custom", "a") == "custom:a"

    def test_hash_is_stable_and_order_independent(self):
        first = CacheKeyBuilder.hash_complex_key({"a": 1, "b": [1, 2]})
        second = CacheKeyBuilder.hash_complex_key({"b": [1, 2], "a": 1})
        assert first == second
        assert len(first) == 12

    def test_tag_key(self):
        assert CacheKeyBuilder.tag_key("location", "loc1") == "tag:location:loc1"


class TestMemoryBackend:
    def test_set_and_get_round_trip_through_json(self, cache):
        cache.set("k", {"when": date(2024, 1, 1), "n": 1})
        assert cache.get("k") == {"when": "2024-01-01", "n": 1}
        assert cache.get_stats()["backend"] == "memory"

    def test_expired_entry_is_a_miss(self, cache):
        cache.set("k", [1], ttl=0)
        assert cache.get("k") is None
        assert cache.get_stats()["misses"] == 1

    def test_invalidate_tag_removes_only_tagged_entries(self, cache):
        cache.set("a", 1, tags=[("location", "loc1")])
        cache.set("b", 2, tags=[("location", "loc1"), ("service", "svc1")])
        cache.set("c", 3, tags=[("location", "loc2")])

        assert cache.invalidate_tag("location", "loc1") == 2

        assert cache.get("a") is None
        assert cache.get("b") is None
        assert cache.get("c") == 3
        # A second invalidation finds nothing left under the tag
        assert cache.invalidate_tag("location", "loc1") == 0

    def test_writes_prune_expired_entries_and_their_tags(self, cache):
        cache.set("stale", 1, ttl=0, tags=[("location", "loc1")])
        cache.set("live", 2, tags=[("location", "loc2")])

        cache.set("other", 3)

        assert "stale" not in cache._memory_cache
        assert "stale" not in cache._memory_expiry
        assert CacheKeyBuilder.tag_key("location", "loc1") not in cache._memory_tags
        assert cache._memory_tags[CacheKeyBuilder.tag_key("location", "loc2")] == {"live"}
        assert cache.get("live") == 2

    def test_delete_single_key(self, cache):
        cache.set("k", 1)

        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None
        assert cache.get_stats()["deletes"] == 1

    def test_delete_pattern(self, cache):
        cache.set("vslots:loc1:x", 1)
        cache.set("vslots:loc2:x", 2)
        cache.set("sslots:svc:x", 3)

        assert cache.delete_pattern("vslots:*") == 2
        assert cache.get("sslots:svc:x") == 3

    def test_get_or_compute_only_computes_on_miss(self, cache):
        compute = MagicMock(return_value={"value": 42})

        assert cache.get_or_compute("k", compute) == {"value": 42}
        assert cache.get_or_compute("k", compute) == {"value": 42}
        compute.assert_called_once()

    def test_stats_hit_rate(self, cache):
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.00%"

        cache.reset_stats()
        assert cache.get_stats()["total_requests"] == 0


class TestRedisBackend:
    @pytest.fixture
    def redis_client(self):
        return MagicMock()

    @pytest.fixture
    def redis_cache(self, redis_client):
        return CacheService(redis_client=redis_client)

    def test_get_decodes_json(self, redis_cache, redis_client):
        redis_client.get.return_value = json.dumps({"a": 1})
        assert redis_cache.get("k") == {"a": 1}
        assert redis_cache.get_stats()["backend"] == "redis"

    def test_set_indexes_key_under_each_tag(self, redis_cache, redis_client):
        pipe = redis_client.pipeline.return_value

        assert redis_cache.set("k", [1], ttl=60, tags=[("location", "loc1")]) is True

        pipe.setex.assert_called_once_with("k", 60, "[1]")
        pipe.sadd.assert_called_once_with("tag:location:loc1", "k")
        pipe.expire.assert_called_once_with("tag:location:loc1", 60)
        pipe.execute.assert_called_once()

    def test_invalidate_tag_deletes_members_and_tag(self, redis_cache, redis_client):
        redis_client.smembers.return_value = {"k1", "k2"}
        redis_client.delete.return_value = 2

        assert redis_cache.invalidate_tag("location", "loc1") == 2
        redis_client.delete.assert_called_with("tag:location:loc1")

    def test_get_error_is_a_miss(self, redis_cache, redis_client):
        redis_client.get.side_effect = RedisError("down")

        assert redis_cache.get("k") is None
        assert redis_cache.get_stats()["errors"] == 1

    def test_invalidation_error_propagates_while_circuit_closed(self, redis_cache, redis_client):
        redis_client.smembers.side_effect = RedisError("down")

        with pytest.raises(RedisError):
            redis_cache.invalidate_tag("location", "loc1")

    def test_open_circuit_skips_redis(self, redis_cache, redis_client):
        redis_client.get.side_effect = RedisError("down")
        for _ in range(redis_cache.circuit_breaker.failure_threshold):
            redis_cache.get("k")

        assert redis_cache.circuit_breaker.state == CircuitState.OPEN
        redis_client.smembers.reset_mock()

        assert redis_cache.invalidate_tag("location", "loc1") == 0
        redis_client.smembers.assert_not_called()
        assert redis_cache.set("k", 1) is False


class TestCircuitBreaker:
    def test_opens_after_threshold_and_returns_none(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        failing = MagicMock(side_effect=RedisError("down"), __name__="failing")

        with pytest.raises(RedisError):
            breaker.call(failing)
        assert breaker.call(failing) is None
        assert breaker.state == CircuitState.OPEN

        assert breaker.call(failing) is None
        assert failing.call_count == 2

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.call(MagicMock(side_effect=RedisError("down"), __name__="failing"))

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.call(MagicMock(return_value="ok", __name__="ok")) == "ok"
        assert breaker.state == CircuitState.CLOSED
