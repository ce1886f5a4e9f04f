"""Push delivery providers."""

from .apns_provider import ApnsPushProvider
from .fcm_provider import FcmPushProvider
from .webpush_provider import WebPushProvider

__all__ = ["ApnsPushProvider", "FcmPushProvider", "WebPushProvider"]
