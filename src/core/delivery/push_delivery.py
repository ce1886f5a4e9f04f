"""Push delivery service."""

import asyncio
import logging
from typing import Any, Optional

from src.core.entities import (
    AuditEvent,
    AuditEventType,
    DeviceToken,
    NotificationStatus,
    PushNotification,
    PushRequest,
)
from src.core.exceptions import DeviceTokenNotFoundError, PushNotificationException
from src.core.interfaces import DeliveryProvider
from src.core.resilience import is_retryable
from src.providers.exceptions import InvalidDeviceTokenError

from .pipeline import DeliveryPipeline

logger = logging.getLogger(__name__)

INVALID_TOKEN_MARKERS = ("invalid", "unregistered", "token")


def is_invalid_token_error(error: BaseException) -> bool:
    """Whether a terminal push failure should deactivate the device token."""
    if isinstance(error, InvalidDeviceTokenError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in INVALID_TOKEN_MARKERS)


def is_push_retryable(error: BaseException) -> bool:
    """
    Retry classification for push sends.

    Only explicit dead-token rejections skip retrying; a failure that merely
    mentions a token (throttling, an expired provider JWT) is still retried
    and only judged by its message once retries are exhausted.
    """
    return is_retryable(error) and not isinstance(error, InvalidDeviceTokenError)


class PushDeliveryService(DeliveryPipeline[PushNotification]):
    """
    Delivers push notifications, choosing the provider by device platform.

    When a send fails because the device token is invalid or unregistered,
    the token is deactivated before the FAILED record is written.
    """

    entity_type = "PUSH_NOTIFICATION"
    send_exception = PushNotificationException

    def __init__(self, *args, device_token_service=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.device_token_service = device_token_service

    async def create_pending_notification(self, request: PushRequest,
                                          device_token: Optional[DeviceToken] = None) -> PushNotification:
        return await self._create_pending(request, device_token)

    async def deliver(self, request: PushRequest,
                      device_token: Optional[DeviceToken] = None) -> PushNotification:
        """
        Deliver a push notification and wait for the outcome.

        Args:
            request: Push to deliver
            device_token: Registered token record; its platform drives provider selection

        Returns:
            The SENT notification

        Raises:
            ProviderNotAvailableError: If no push provider is available
            PushNotificationException: If delivery failed after all retries
        """
        return await self._deliver(request, device_token)

    def deliver_async(self, request: PushRequest, notification_id: str,
                      device_token: Optional[DeviceToken] = None) -> asyncio.Task:
        return self._deliver_async(request, notification_id, device_token)

    def _select_provider(self, request: PushRequest,
                         context: Optional[DeviceToken]) -> DeliveryProvider:
        platform = context.platform if context is not None else request.platform
        return self.selector.select_provider_by_platform(platform)

    def _build_record(self, request: PushRequest, context: Optional[DeviceToken],
                      status: NotificationStatus, provider_type=None) -> PushNotification:
        return PushNotification(
            user_id=context.user_id if context is not None else request.user_id,
            device_token_id=context.id if context is not None else None,
            device_token=request.device_token,
            platform=context.platform if context is not None else request.platform,
            title=request.title,
            body=request.body,
            data=dict(request.data),
            image_url=request.image_url,
            event_id=request.event_id,
            service_id=request.service_id,
            status=status,
            provider_type=provider_type,
        )

    def _apply_message_id(self, notification: PushNotification, message_id: Optional[str]) -> None:
        notification.provider_message_id = message_id

    async def _on_delivery_failure(self, error: BaseException, request: PushRequest,
                                   context: Optional[DeviceToken]) -> None:
        if not is_invalid_token_error(error) or self.device_token_service is None:
            return

        token_value = context.device_token if context is not None else request.device_token
        logger.warning(f"Invalid device token, deactivating: {token_value}")
        try:
            await self.device_token_service.deactivate_token(token_value)
        except DeviceTokenNotFoundError:
            logger.info(f"Device token to deactivate is not registered: {token_value}")
            return

        self._publish(AuditEvent(
            event_type=AuditEventType.DEVICE_TOKEN_DEACTIVATED,
            entity_id=context.id if context is not None else None,
            entity_type="DEVICE_TOKEN",
            action="DEACTIVATE_TOKEN",
            user_id=context.user_id if context is not None else request.user_id,
            metadata={"reason": str(error)},
        ))

    def _success_event(self, notification: PushNotification, request: PushRequest,
                       context: Optional[DeviceToken]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_PROCESSED,
            entity_id=notification.id,
            entity_type=self.entity_type,
            action="SEND_PUSH",
            user_id=notification.user_id,
            metadata={
                "platform": notification.platform.name if notification.platform else None,
                "title": request.title,
                "provider": notification.provider_type.value if notification.provider_type else None,
                "processing_time_ms": notification.processing_time_ms,
            },
        )

    def _failure_event(self, notification: PushNotification, request: PushRequest,
                       context: Optional[DeviceToken], error: BaseException) -> AuditEvent:
        return AuditEvent.failure(
            AuditEventType.PUSH_FAILED,
            error,
            entity_id=notification.id,
            entity_type=self.entity_type,
            action="SEND_PUSH",
            user_id=notification.user_id,
            metadata={"retry_count": notification.retry_count},
        )
