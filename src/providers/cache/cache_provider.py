"""Cache provider interface for backend implementations."""

from abc import ABC, abstractmethod
from typing import Optional


class CacheProvider(ABC):
    """Interface for key/value cache backends with expiry."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Retrieve a value from cache by key.

        Args:
            key: The cache key

        Returns:
            Cached value as string if found, None otherwise
        """
        pass

    @abstractmethod
    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """
        Store a value in cache.

        Args:
            key: The cache key
            value: The value to cache (as string)
            ttl_seconds: Expiry in seconds, None to keep the key forever
        """
        pass

    @abstractmethod
    def put_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """
        Atomically store a value only if the key does not exist.

        Args:
            key: The cache key
            value: The value to cache
            ttl_seconds: Expiry in seconds

        Returns:
            True if the value was stored, False if the key already existed

        Raises:
            CacheError: If the backend could not be reached
        """
        pass

    @abstractmethod
    def has(self, key: str) -> bool:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a key from cache.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """
        Ping the cache backend to check health.

        Returns:
            True if backend responds, False otherwise
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """
        Get the name of the cache backend.

        Returns:
            Backend name (e.g., 'redis', 'none')
        """
        pass

    async def health_check(self) -> dict:
        """Health summary in the shape the health use case reports."""
        healthy = await self.ping()
        return {
            "healthy": healthy,
            "backend": self.get_backend_name(),
            "connected": self.is_connected(),
        }
