"""Apple Push Notification service provider over HTTP/2."""

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
import jwt

from ...core.entities import PushProviderType, PushRequest
from ...core.interfaces import PushProvider
from ...core.resilience import CircuitBreaker
from ..exceptions import InvalidDeviceTokenError, PushProviderError

logger = logging.getLogger(__name__)

PRODUCTION_HOST = "https://api.push.apple.com"
DEVELOPMENT_HOST = "https://api.sandbox.push.apple.com"

# Apple rejects provider tokens older than one hour
TOKEN_REFRESH_SECONDS = 50 * 60

REJECTION_MESSAGES = {
    "BadDeviceToken": "Invalid or unregistered device token",
    "Unregistered": "Invalid or unregistered device token",
    "BadTopic": "Topic does not match the bundle ID",
    "DeviceTokenNotForTopic": "Device token not valid for this bundle ID",
    "PayloadTooLarge": "Notification payload exceeds 4KB limit",
    "BadCertificate": "Certificate issue: BadCertificate",
    "BadCertificateEnvironment": "Certificate issue: BadCertificateEnvironment",
    "ExpiredProviderToken": "Provider JWT expired, signing a new one",
    "TooManyRequests": "Too many requests to this device",
}

# Rejections meaning the token will never be deliverable again
DEAD_TOKEN_REASONS = {"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"}


class ApnsPushProvider(PushProvider):
    """
    Sends push notifications directly to APNs.

    Authenticates with a provider token: a JWT signed with the team's
    ES256 key, cached and refreshed before Apple's one hour limit.
    """

    def __init__(
        self,
        team_id: Optional[str],
        key_id: Optional[str],
        bundle_id: Optional[str],
        key_path: Optional[str] = None,
        signing_key: Optional[str] = None,
        production: bool = False,
        timeout_seconds: float = 10.0,
        priority: int = 5,
        enabled: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the APNs provider.

        Args:
            team_id: Apple developer team id (JWT issuer)
            key_id: Id of the signing key (JWT ``kid`` header)
            bundle_id: App bundle id, sent as ``apns-topic``
            key_path: Path to the .p8 signing key
            signing_key: PEM contents of the signing key, takes precedence over key_path
            production: Use the production gateway instead of the sandbox
            timeout_seconds: Request timeout
            priority: Selection priority
            enabled: Whether the provider is enabled
            circuit_breaker: Optional breaker guarding sends
            client: Pre-built HTTP client (tests)
            clock: Time source for token issuing
        """
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self.team_id = team_id
        self.key_id = key_id
        self.bundle_id = bundle_id
        self.production = production
        self.timeout_seconds = timeout_seconds
        self._clock = clock

        self._signing_key = signing_key
        if self._signing_key is None and key_path and enabled:
            self._signing_key = self._load_key(key_path)

        self._client = client
        self._token: Optional[str] = None
        self._token_issued_at = 0.0

        if self.is_configured():
            logger.info(
                f"APNs provider configured for {'PRODUCTION' if production else 'DEVELOPMENT'} environment"
            )

    @staticmethod
    def _load_key(key_path: str) -> Optional[str]:
        try:
            with open(key_path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            logger.error(f"APNs key file could not be read: {key_path}: {e}")
            return None

    @property
    def provider_type(self) -> PushProviderType:
        return PushProviderType.APNS

    @property
    def host(self) -> str:
        return PRODUCTION_HOST if self.production else DEVELOPMENT_HOST

    def is_configured(self) -> bool:
        return all([self.team_id, self.key_id, self.bundle_id, self._signing_key])

    async def send(self, request: PushRequest) -> Optional[str]:
        """
        Send a push notification to APNs.

        Returns:
            The ``apns-id`` assigned to the notification

        Raises:
            PushProviderError: If APNs rejects the notification or is unreachable
        """
        if not self.is_configured():
            raise PushProviderError("APNs provider not configured")

        logger.info(f"Sending APNs push notification to token: {request.device_token[:10]}...")

        try:
            response = await self._get_client().post(
                f"/3/device/{request.device_token}",
                json=self.build_payload(request),
                headers=self._get_headers(request),
            )
        except httpx.HTTPError as e:
            raise PushProviderError(f"Failed to send APNs notification: {e}") from e

        if response.status_code == 200:
            apns_id = response.headers.get("apns-id")
            logger.info(f"APNs notification accepted. APNs ID: {apns_id}")
            return apns_id

        reason = self._rejection_reason(response)
        logger.error(f"APNs notification rejected: {reason}")
        if reason == "ExpiredProviderToken":
            self._token = None
        message = REJECTION_MESSAGES.get(reason, f"APNs rejection: {reason}")
        if reason in DEAD_TOKEN_REASONS:
            raise InvalidDeviceTokenError(message)
        raise PushProviderError(message)

    def build_payload(self, request: PushRequest) -> Dict[str, Any]:
        aps: Dict[str, Any] = {
            "alert": {"title": request.title, "body": request.body},
            "sound": request.sound or "default",
        }
        if request.badge is not None:
            aps["badge"] = request.badge
        if request.click_action:
            aps["category"] = request.click_action
        if request.image_url:
            aps["mutable-content"] = 1
            aps["content-available"] = 1

        payload: Dict[str, Any] = {"aps": aps}
        payload.update(request.data)
        if request.image_url:
            payload["image-url"] = request.image_url
        return payload

    def provider_token(self) -> str:
        """Current provider JWT, re-signed when older than the refresh interval."""
        now = self._clock()
        if self._token is None or now - self._token_issued_at >= TOKEN_REFRESH_SECONDS:
            self._token = jwt.encode(
                {"iss": self.team_id, "iat": int(now)},
                self._signing_key,
                algorithm="ES256",
                headers={"kid": self.key_id},
            )
            self._token_issued_at = now
        return self._token

    def _get_headers(self, request: PushRequest) -> Dict[str, str]:
        headers = {
            "authorization": f"bearer {self.provider_token()}",
            "apns-topic": self.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10" if request.priority >= 10 else "5",
        }
        if request.ttl_seconds is not None:
            headers["apns-expiration"] = str(int(self._clock()) + request.ttl_seconds)
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.host, http2=True, timeout=self.timeout_seconds
            )
        return self._client

    @staticmethod
    def _rejection_reason(response: httpx.Response) -> str:
        try:
            return response.json().get("reason", f"HTTP {response.status_code}")
        except ValueError:
            return f"HTTP {response.status_code}"

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("APNs client closed")

    def __str__(self) -> str:
        return f"ApnsPushProvider(bundle_id={self.bundle_id}, production={self.production})"
