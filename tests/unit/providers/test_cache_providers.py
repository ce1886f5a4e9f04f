"""Tests for the cache providers."""

from unittest.mock import MagicMock

import pytest
import redis

from src.providers.cache import NoCacheProvider, RedisCacheProvider
from src.providers.exceptions import CacheError


class TestRedisCacheProvider:
    """Test the Redis cache provider against fakeredis."""

    def test_get_put_delete(self, redis_cache):
        redis_cache.put("greeting", "hello", ttl_seconds=60)

        assert redis_cache.get("greeting") == "hello"
        assert redis_cache.has("greeting") is True
        assert redis_cache.client.ttl("greeting") > 0
        assert redis_cache.delete("greeting") is True
        assert redis_cache.delete("greeting") is False
        assert redis_cache.get("greeting") is None

    def test_put_if_absent(self, redis_cache):
        assert redis_cache.put_if_absent("lock", "first", ttl_seconds=60) is True
        assert redis_cache.put_if_absent("lock", "second", ttl_seconds=60) is False
        assert redis_cache.get("lock") == "first"

    def test_put_if_absent_propagates_errors(self):
        client = MagicMock()
        client.set.side_effect = redis.ConnectionError("connection lost")
        cache = RedisCacheProvider(client=client)

        with pytest.raises(CacheError, match="connection lost"):
            cache.put_if_absent("lock", "value")

    def test_reads_tolerate_errors(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("connection lost")
        cache = RedisCacheProvider(client=client)

        assert cache.get("key") is None

    def test_unreachable_server(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        cache = RedisCacheProvider(client=client)

        assert cache.is_connected() is False
        assert cache.get("key") is None
        assert cache.put_if_absent("key", "value") is True

    @pytest.mark.asyncio
    async def test_health_check(self, redis_cache):
        health = await redis_cache.health_check()

        assert health == {"healthy": True, "backend": "redis", "connected": True}


class TestNoCacheProvider:
    """Test the no-op cache provider."""

    @pytest.mark.asyncio
    async def test_nothing_is_stored(self):
        cache = NoCacheProvider()
        cache.put("key", "value")

        assert cache.get("key") is None
        assert cache.has("key") is False
        assert cache.put_if_absent("key", "value") is True
        assert cache.put_if_absent("key", "value") is True
        assert cache.get_backend_name() == "none"
        assert (await cache.health_check())["healthy"] is True
