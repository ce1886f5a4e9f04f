"""Sliding-window rate limiter for internal callers, backed by Redis."""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "ratelimit:notification:"
GLOBAL_SCOPE = "global"

# KEYS[1] window key; ARGV: limit, window_ms, now_ms, unique member.
# Prune, count and admit run as one script so concurrent callers can never
# both observe the same count.
RATE_LIMIT_LUA_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window_ms)
local current = redis.call('ZCARD', key)

if current < limit then
  redis.call('ZADD', key, now, member)
  redis.call('PEXPIRE', key, window_ms)
  return {1, limit - current - 1}
end
return {0, 0}
"""


@dataclass(frozen=True)
class RateLimitSettings:
    """Limits applied by :class:`InternalServiceRateLimiter`."""

    enabled: bool = True
    window_seconds: int = 60
    global_requests_per_minute: int = 1000
    per_service_enabled: bool = True
    per_service_requests_per_minute: int = 200


class InternalServiceRateLimiter:
    """
    Admission control over notification requests.

    Two scopes are checked in order, ``global`` then ``service:<id>``, and a
    request is admitted only if every scope admits it. Redis failures fail
    open: the request is admitted and the error logged.
    """

    def __init__(
        self,
        redis_client,
        settings: Optional[RateLimitSettings] = None,
        clock: Callable[[], float] = time.time,
        key_prefix: str = RATE_LIMIT_KEY_PREFIX,
    ):
        """
        Initialize the rate limiter.

        Args:
            redis_client: A ``redis.Redis`` compatible client
            settings: Limits and window
            clock: Wall-clock time source in seconds, injectable for tests
            key_prefix: Prefix of every window key
        """
        self._redis = redis_client
        self.settings = settings or RateLimitSettings()
        self._clock = clock
        self.key_prefix = key_prefix
        self._script = redis_client.register_script(RATE_LIMIT_LUA_SCRIPT)

        logger.info(
            f"Rate limiter initialized: global {self.settings.global_requests_per_minute}/"
            f"{self.settings.window_seconds}s, per-service "
            f"{self.settings.per_service_requests_per_minute}/{self.settings.window_seconds}s "
            f"(enabled={self.settings.enabled})"
        )

    @property
    def window_ms(self) -> int:
        return self.settings.window_seconds * 1000

    def allow_notification(self, service_id: Optional[str] = None) -> bool:
        """
        Check whether a notification request may proceed.

        Args:
            service_id: Calling service identifier (e.g. "order-service")

        Returns:
            True if allowed, False if a limit was exceeded
        """
        if not self.settings.enabled:
            return True

        try:
            if not self.check_limit(GLOBAL_SCOPE, self.settings.global_requests_per_minute):
                logger.error("GLOBAL rate limit exceeded - system overload!")
                return False

            if self.settings.per_service_enabled and service_id:
                if not self.check_limit(
                    self._service_scope(service_id),
                    self.settings.per_service_requests_per_minute,
                ):
                    logger.warning(f"Service rate limit exceeded for: {service_id}")
                    return False

            return True

        except Exception as e:
            logger.error(f"Error checking rate limit, allowing request: {e}")
            return True

    def check_limit(self, scope: str, limit: int) -> bool:
        """
        Atomically prune, count and admit one request for a scope.

        Args:
            scope: Scope name (``global`` or ``service:<id>``)
            limit: Maximum admissions within the window

        Returns:
            True if admitted; also True if Redis is unreachable
        """
        key = self.key_prefix + scope
        now_ms = self._now_ms()
        member = f"{now_ms}-{uuid.uuid4().hex}"

        try:
            result = self._script(keys=[key], args=[limit, self.window_ms, now_ms, member])
        except Exception as e:
            logger.error(f"Error executing rate limit script for key {key}: {e}")
            return True

        if not result:
            return False
        return int(result[0]) == 1

    def get_remaining_global(self) -> int:
        return self._get_remaining(GLOBAL_SCOPE, self.settings.global_requests_per_minute)

    def get_remaining_for_service(self, service_id: str) -> int:
        return self._get_remaining(
            self._service_scope(service_id),
            self.settings.per_service_requests_per_minute,
        )

    def get_current_count(self, scope: str) -> int:
        """
        Count admissions inside the current window (diagnostics only).

        Args:
            scope: Scope name (``global`` or ``service:<id>``)

        Returns:
            Number of admissions, 0 if Redis is unreachable
        """
        try:
            return self._count_in_window(self.key_prefix + scope)
        except Exception as e:
            logger.error(f"Error getting current count for scope {scope}: {e}")
            return 0

    def reset_service_limit(self, service_id: str) -> None:
        """Reset the rate limit window of a service (admin/testing)."""
        self._redis.delete(self.key_prefix + self._service_scope(service_id))
        logger.info(f"Reset rate limit for service: {service_id}")

    def reset_global_limit(self) -> None:
        self._redis.delete(self.key_prefix + GLOBAL_SCOPE)
        logger.info("Reset global rate limit")

    def _get_remaining(self, scope: str, limit: int) -> int:
        try:
            return max(0, limit - self._count_in_window(self.key_prefix + scope))
        except Exception as e:
            logger.error(f"Error getting remaining capacity for scope {scope}: {e}")
            return limit

    def _count_in_window(self, key: str) -> int:
        window_start = self._now_ms() - self.window_ms
        return int(self._redis.zcount(key, f"({window_start}", "+inf"))

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _service_scope(service_id: str) -> str:
        return f"service:{service_id}"
