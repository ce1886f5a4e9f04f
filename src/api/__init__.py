"""HTTP-facing components."""

from .rate_limit_middleware import RATE_LIMITER_KEY, rate_limit_middleware, setup_rate_limiting
from .routes import DISPATCHER_KEY, create_web_app

__all__ = [
    "DISPATCHER_KEY",
    "RATE_LIMITER_KEY",
    "create_web_app",
    "rate_limit_middleware",
    "setup_rate_limiting",
]
