"""Firebase Cloud Messaging push provider."""

import asyncio
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from ...core.entities import PushProviderType, PushRequest
from ...core.interfaces import PushProvider
from ...core.resilience import CircuitBreaker
from ..exceptions import InvalidDeviceTokenError, PushProviderError

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "herald"


class FcmPushProvider(PushProvider):
    """Sends push notifications through Firebase Cloud Messaging."""

    def __init__(
        self,
        credentials_file: Optional[str] = None,
        dry_run: bool = False,
        priority: int = 10,
        enabled: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
        app: Optional[firebase_admin.App] = None,
    ):
        """
        Initialize the FCM provider.

        Args:
            credentials_file: Service account JSON file
            dry_run: Validate messages without delivering them
            priority: Selection priority
            enabled: Whether the provider is enabled
            circuit_breaker: Optional breaker guarding sends
            app: Pre-initialized Firebase app, skips credential loading
        """
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self.credentials_file = credentials_file
        self.dry_run = dry_run
        self._app = app

        if self._app is None and enabled and credentials_file:
            self._app = self._init_firebase(credentials_file)

    @staticmethod
    def _init_firebase(credentials_file: str) -> Optional[firebase_admin.App]:
        try:
            return firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            pass

        try:
            cred = credentials.Certificate(credentials_file)
            app = firebase_admin.initialize_app(cred, name=FIREBASE_APP_NAME)
            logger.info("Firebase app initialized for FCM")
            return app
        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
            return None

    @property
    def provider_type(self) -> PushProviderType:
        return PushProviderType.FCM

    def is_configured(self) -> bool:
        return self._app is not None

    async def send(self, request: PushRequest) -> Optional[str]:
        """
        Send a push notification through FCM.

        Returns:
            The FCM message id

        Raises:
            InvalidDeviceTokenError: If the token is invalid or unregistered
            PushProviderError: If FCM rejects the message for another reason
        """
        if self._app is None:
            raise PushProviderError("FCM provider not initialized")

        logger.info(f"Sending FCM push notification to token: {request.device_token[:10]}...")
        message = self.build_message(request)

        try:
            message_id = await asyncio.to_thread(
                messaging.send, message, dry_run=self.dry_run, app=self._app
            )
        except messaging.UnregisteredError as e:
            raise InvalidDeviceTokenError(f"Invalid device token: {e}") from e
        except exceptions.InvalidArgumentError as e:
            raise InvalidDeviceTokenError(f"Invalid device token: {e}") from e
        except messaging.SenderIdMismatchError as e:
            raise PushProviderError("Device registered to a different sender") from e
        except messaging.QuotaExceededError as e:
            raise PushProviderError("FCM quota exceeded") from e
        except (exceptions.UnavailableError, exceptions.InternalError) as e:
            raise PushProviderError("FCM service temporarily unavailable") from e
        except exceptions.FirebaseError as e:
            raise PushProviderError(f"FCM error: {e.code}") from e

        logger.info(f"Successfully sent FCM message. ID: {message_id}")
        return message_id

    def build_message(self, request: PushRequest) -> messaging.Message:
        android_notification = messaging.AndroidNotification(
            title=request.title,
            body=request.body,
            sound=request.sound,
            image=request.image_url,
            click_action=request.click_action,
        )
        android = messaging.AndroidConfig(
            notification=android_notification,
            priority="high" if request.is_high_priority else "normal",
            ttl=request.ttl_seconds,
        )
        apns = messaging.APNSConfig(
            headers={"apns-priority": "10" if request.is_high_priority else "5"},
            payload=messaging.APNSPayload(
                aps=messaging.Aps(
                    alert=messaging.ApsAlert(title=request.title, body=request.body),
                    sound=request.sound or "default",
                    badge=request.badge,
                )
            ),
        )

        return messaging.Message(
            token=request.device_token,
            notification=messaging.Notification(
                title=request.title, body=request.body, image=request.image_url
            ),
            data=dict(request.data) or None,
            android=android,
            apns=apns,
        )

    def __str__(self) -> str:
        return f"FcmPushProvider(priority={self.priority}, dry_run={self.dry_run})"
