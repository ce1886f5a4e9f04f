"""No-cache provider for when Redis is not configured."""

import logging
from typing import Optional

from .cache_provider import CacheProvider

logger = logging.getLogger(__name__)


class NoCacheProvider(CacheProvider):
    """No-op cache provider; nothing is ever stored."""

    def __init__(self):
        logger.debug("No-cache provider initialized (caching disabled)")

    def get(self, key: str) -> Optional[str]:
        return None

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        pass

    def put_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """
        Put-if-absent operation (no-op).

        Returns:
            True, since no key can exist
        """
        return True

    def has(self, key: str) -> bool:
        return False

    def delete(self, key: str) -> bool:
        return False

    def is_connected(self) -> bool:
        """
        Check connection status.

        Returns:
            True (no-cache is always "connected")
        """
        return True

    async def ping(self) -> bool:
        return True

    def get_backend_name(self) -> str:
        return "none"
