"""Redis cache provider implementation."""

import logging
from typing import Optional

import redis

from ..exceptions import CacheError
from .cache_provider import CacheProvider

logger = logging.getLogger(__name__)


class RedisCacheProvider(CacheProvider):
    """Redis backend provider for cache operations."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize Redis cache provider.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            client: Existing client to share, takes precedence over redis_url
        """
        self._redis = client
        self._connected = False

        if self._redis is None and redis_url:
            self._redis = redis.from_url(redis_url, decode_responses=True)

        if self._redis is not None:
            try:
                self._redis.ping()
                self._connected = True
                logger.debug(f"Connected to Redis at {redis_url or 'shared client'}")
            except Exception as e:
                logger.warning(f"Failed to connect to Redis: {e}")

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._redis

    def get(self, key: str) -> Optional[str]:
        if not self._connected:
            return None

        try:
            return self._redis.get(key)
        except Exception as e:
            logger.warning(f"Failed to get key {key} from Redis: {e}")
            return None

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """
        Store a value in Redis.

        Args:
            key: The cache key
            value: The value to cache (as string)
            ttl_seconds: Expiry in seconds
        """
        if not self._connected:
            return

        try:
            self._redis.set(key, value, ex=ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to set key {key} in Redis: {e}")

    def put_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """
        Store a value with SET NX.

        Returns:
            True if stored, False if the key already existed. Without a
            connection nothing can exist, so True is returned.

        Raises:
            CacheError: If the Redis command fails
        """
        if not self._connected:
            return True

        try:
            return bool(self._redis.set(key, value, nx=True, ex=ttl_seconds))
        except Exception as e:
            raise CacheError(f"Failed to set key {key} in Redis: {e}") from e

    def has(self, key: str) -> bool:
        if not self._connected:
            return False

        try:
            return self._redis.exists(key) > 0
        except Exception as e:
            logger.warning(f"Failed to check key {key} in Redis: {e}")
            return False

    def delete(self, key: str) -> bool:
        if not self._connected:
            return False

        try:
            return self._redis.delete(key) > 0
        except Exception as e:
            logger.warning(f"Failed to delete key {key} from Redis: {e}")
            return False

    def is_connected(self) -> bool:
        return self._connected

    async def ping(self) -> bool:
        """
        Ping Redis to check health.

        Returns:
            True if Redis responds, False otherwise
        """
        if self._redis is None:
            return False

        try:
            self._redis.ping()
            self._connected = True
            return True
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def get_backend_name(self) -> str:
        return "redis"

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()
