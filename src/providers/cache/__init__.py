"""Cache providers module."""

from .cache_provider import CacheProvider
from .no_cache_provider import NoCacheProvider
from .redis_cache_provider import RedisCacheProvider

__all__ = ["CacheProvider", "RedisCacheProvider", "NoCacheProvider"]
