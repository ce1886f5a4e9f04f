"""aiohttp middleware enforcing the internal service rate limits."""

import asyncio
import logging

from aiohttp import web

from src.core.ratelimit import InternalServiceRateLimiter

logger = logging.getLogger(__name__)

NOTIFICATION_PATH_PREFIX = "/api/v1/notification"
SERVICE_ID_HEADER = "X-Service-Id"
DEFAULT_SERVICE_ID = "unknown-service"

RATE_LIMITER_KEY = web.AppKey("rate_limiter", InternalServiceRateLimiter)


def rate_limit_middleware(
    rate_limiter: InternalServiceRateLimiter,
    path_prefix: str = NOTIFICATION_PATH_PREFIX,
):
    """
    Build a middleware that rate limits notification endpoints per calling service.

    Args:
        rate_limiter: Limiter consulted for every matching request
        path_prefix: Only requests under this path are limited

    Returns:
        aiohttp middleware
    """

    @web.middleware
    async def middleware(request: web.Request, handler):
        if not request.path.startswith(path_prefix):
            return await handler(request)

        service_id = request.headers.get(SERVICE_ID_HEADER) or DEFAULT_SERVICE_ID

        # The limiter uses a blocking Redis client
        allowed = await asyncio.to_thread(rate_limiter.allow_notification, service_id)
        if not allowed:
            logger.warning(f"Rate limit exceeded for service: {service_id} on {request.path}")
            return web.json_response(
                {
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded. Please try again later.",
                    "code": "RATE_LIMIT_EXCEEDED",
                    "serviceId": service_id,
                },
                status=429,
            )

        remaining_global = await asyncio.to_thread(rate_limiter.get_remaining_global)
        remaining_service = await asyncio.to_thread(rate_limiter.get_remaining_for_service, service_id)

        response = await handler(request)
        response.headers["X-RateLimit-Remaining-Global"] = str(remaining_global)
        response.headers["X-RateLimit-Remaining-Service"] = str(remaining_service)
        response.headers["X-RateLimit-Service"] = service_id
        response.headers["X-RateLimit-Window"] = f"{rate_limiter.settings.window_seconds}s"
        return response

    return middleware


def setup_rate_limiting(app: web.Application, rate_limiter: InternalServiceRateLimiter) -> None:
    """Attach the rate limiter to an application."""
    app[RATE_LIMITER_KEY] = rate_limiter
    app.middlewares.append(rate_limit_middleware(rate_limiter))
