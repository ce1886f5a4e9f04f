"""Browser push provider using the Web Push protocol with VAPID."""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from pywebpush import WebPushException, webpush

from ...core.entities import PushProviderType, PushRequest
from ...core.interfaces import PushProvider
from ...core.resilience import CircuitBreaker
from ..exceptions import InvalidDeviceTokenError, PushProviderError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600

STATUS_MESSAGES = {
    400: "Bad request",
    401: "Authentication failed",
    403: "Authentication failed",
    404: "Invalid or expired subscription",
    410: "Invalid or expired subscription",
    413: "Payload too large",
    429: "Rate limit exceeded",
    500: "Push service unavailable",
    502: "Push service unavailable",
    503: "Push service unavailable",
}

DEAD_SUBSCRIPTION_STATUSES = {404, 410}


class WebPushProvider(PushProvider):
    """
    Sends notifications to browser push subscriptions.

    The device token of a web device is the JSON-serialized push
    subscription (``endpoint`` plus ``keys.p256dh`` and ``keys.auth``).
    """

    def __init__(
        self,
        vapid_public_key: Optional[str],
        vapid_private_key: Optional[str],
        subject: Optional[str],
        priority: int = 3,
        enabled: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self.vapid_public_key = vapid_public_key
        self.vapid_private_key = vapid_private_key
        self.subject = subject

    @property
    def provider_type(self) -> PushProviderType:
        return PushProviderType.WEB_PUSH

    def is_configured(self) -> bool:
        return all([self.vapid_public_key, self.vapid_private_key, self.subject])

    async def send(self, request: PushRequest) -> Optional[str]:
        """
        Send a notification to a browser subscription.

        Returns:
            The push service ``Location`` of the created message, if reported

        Raises:
            InvalidDeviceTokenError: If the subscription is malformed or gone
            PushProviderError: If the push service rejects the message
        """
        if not self.is_configured():
            raise PushProviderError("Web Push provider not configured")

        logger.info(f"Sending Web Push notification to subscription: {request.device_token[:10]}...")
        subscription = self.parse_subscription(request.device_token)

        try:
            response = await asyncio.to_thread(
                webpush,
                subscription_info=subscription,
                data=json.dumps(self.build_payload(request)),
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.subject},
                ttl=request.ttl_seconds or DEFAULT_TTL_SECONDS,
                headers={"Urgency": self._urgency(request.priority)},
            )
        except WebPushException as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"Web Push notification failed. Status: {status}")
            message = STATUS_MESSAGES.get(status, f"Web Push failed with status: {status}")
            if status in DEAD_SUBSCRIPTION_STATUSES:
                raise InvalidDeviceTokenError(message) from e
            raise PushProviderError(message) from e

        logger.info(f"Web Push notification sent successfully. Status: {response.status_code}")
        return response.headers.get("Location")

    @staticmethod
    def parse_subscription(device_token: str) -> Dict[str, Any]:
        """
        Parse a serialized push subscription.

        Raises:
            InvalidDeviceTokenError: If the token is not a valid subscription
        """
        try:
            subscription = json.loads(device_token)
        except (TypeError, ValueError) as e:
            raise InvalidDeviceTokenError("Invalid device token format") from e

        if not isinstance(subscription, dict) or not subscription.get("endpoint"):
            raise InvalidDeviceTokenError("Invalid subscription format")
        keys = subscription.get("keys")
        if not isinstance(keys, dict) or not keys.get("p256dh") or not keys.get("auth"):
            raise InvalidDeviceTokenError("Invalid subscription: missing keys")
        return subscription

    def build_payload(self, request: PushRequest) -> Dict[str, Any]:
        notification: Dict[str, Any] = {
            "title": request.title,
            "body": request.body,
            "requireInteraction": False,
            "vibrate": [200, 100, 200],
            "timestamp": int(time.time() * 1000),
        }
        if request.image_url:
            notification["icon"] = request.image_url
            notification["image"] = request.image_url
        if request.badge is not None:
            notification["badge"] = request.badge
        if request.click_action:
            notification["data"] = {"url": request.click_action}
        if request.sound == "silent":
            notification["silent"] = True

        payload: Dict[str, Any] = {"notification": notification}
        if request.data:
            payload["data"] = dict(request.data)
        return payload

    @staticmethod
    def _urgency(priority: int) -> str:
        if priority >= 10:
            return "high"
        if priority >= 5:
            return "normal"
        if priority >= 2:
            return "low"
        return "very-low"

    def __str__(self) -> str:
        return f"WebPushProvider(subject={self.subject}, priority={self.priority})"
