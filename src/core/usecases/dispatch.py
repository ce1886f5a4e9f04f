"""Notification dispatch use case: validation, deduplication and delivery."""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from src.core.delivery import EmailDeliveryService, PushDeliveryService
from src.core.entities import (
    DeviceToken,
    EmailNotification,
    EmailRequest,
    NotificationStatus,
    PushNotification,
    PushRequest,
)
from src.core.exceptions import (
    DeviceTokenNotFoundError,
    DuplicateNotificationError,
    NotificationNotFoundError,
    NotificationSendException,
    ValidationError,
)

from .device_tokens import DeviceTokenService
from .idempotency import IdempotencyService
from .validation import EmailValidationService, PushValidationService

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/v1/notification/{channel}/status/{notification_id}"


@dataclass
class DeliveryReceipt:
    """Acknowledgement returned for a notification accepted for async delivery."""

    notification_id: str
    status: NotificationStatus
    message: str
    status_check_url: str
    accepted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)


class NotificationDispatcher:
    """
    Entry point for sending notifications.

    Validates each request, claims its ``event_id`` for deduplication, then
    hands it to the channel's delivery service either synchronously or for
    background delivery.
    """

    def __init__(
        self,
        email_delivery: EmailDeliveryService,
        push_delivery: PushDeliveryService,
        device_tokens: DeviceTokenService,
        idempotency: IdempotencyService,
        email_validation: Optional[EmailValidationService] = None,
        push_validation: Optional[PushValidationService] = None,
    ):
        self.email_delivery = email_delivery
        self.push_delivery = push_delivery
        self.device_tokens = device_tokens
        self.idempotency = idempotency
        self.email_validation = email_validation or EmailValidationService()
        self.push_validation = push_validation or PushValidationService()

    async def send_email(self, request: EmailRequest) -> EmailNotification:
        """
        Send an email and wait for the delivery outcome.

        Args:
            request: Email to send

        Returns:
            The SENT notification

        Raises:
            ValidationError: If the request is invalid
            DuplicateNotificationError: If the event id was already processed
            ProviderNotAvailableError: If no email provider is available
            NotificationSendException: If delivery failed after all retries
        """
        logger.info(f"Dispatching SYNC email to: {request.to}")
        self.email_validation.validate_email_request(request)
        self._claim(request.event_id)

        try:
            notification = await self.email_delivery.deliver(request)
        except NotificationSendException as e:
            self.idempotency.mark_as_failed(request.event_id, str(e.cause or e))
            raise
        except Exception:
            self.idempotency.remove_record(request.event_id)
            raise

        self.idempotency.mark_as_processed(request.event_id, notification.id)
        return notification

    async def send_email_async(self, request: EmailRequest) -> DeliveryReceipt:
        """
        Accept an email for background delivery.

        Returns:
            Receipt carrying the PENDING notification id
        """
        logger.info(f"Dispatching ASYNC email to: {request.to}")
        self.email_validation.validate_email_request(request)
        self._claim(request.event_id)

        try:
            notification = await self.email_delivery.create_pending_notification(request)
        except Exception:
            self.idempotency.remove_record(request.event_id)
            raise

        task = self.email_delivery.deliver_async(request, notification.id)
        self.idempotency.mark_as_processed(request.event_id, notification.id)
        return self._receipt("email", notification.id, "Email accepted for processing", task)

    async def send_push(self, request: PushRequest) -> PushNotification:
        """
        Send a push notification and wait for the delivery outcome.

        The target is ``request.device_token`` when given, otherwise the
        first active token registered for ``request.user_id``.

        Raises:
            ValidationError: If the request is invalid
            DuplicateNotificationError: If the event id was already processed
            DeviceTokenNotFoundError: If no active token matches the request
            PushNotificationException: If delivery failed after all retries
        """
        logger.info("Dispatching SYNC push notification")
        self.push_validation.validate_send_request(request)
        device_token = await self._resolve_device_token(request)
        self._claim(request.event_id)

        push_request = self._for_device(request, device_token)
        try:
            notification = await self.push_delivery.deliver(push_request, device_token)
        except NotificationSendException as e:
            self.idempotency.mark_as_failed(request.event_id, str(e.cause or e))
            raise
        except Exception:
            self.idempotency.remove_record(request.event_id)
            raise

        self.idempotency.mark_as_processed(request.event_id, notification.id)
        return notification

    async def send_push_async(self, request: PushRequest) -> DeliveryReceipt:
        logger.info("Dispatching ASYNC push notification")
        self.push_validation.validate_send_request(request)
        device_token = await self._resolve_device_token(request)
        self._claim(request.event_id)

        push_request = self._for_device(request, device_token)
        try:
            notification = await self.push_delivery.create_pending_notification(push_request, device_token)
        except Exception:
            self.idempotency.remove_record(request.event_id)
            raise

        task = self.push_delivery.deliver_async(push_request, notification.id, device_token)
        self.idempotency.mark_as_processed(request.event_id, notification.id)
        return self._receipt("push", notification.id, "Push notification accepted for processing", task)

    async def send_push_to_user(self, request: PushRequest) -> List[DeliveryReceipt]:
        """
        Fan a push notification out to every active device of a user.

        Args:
            request: Push content; ``user_id`` is required, ``device_token`` is ignored

        Returns:
            One receipt per device

        Raises:
            ValidationError: If the request has no user id
            DeviceTokenNotFoundError: If the user has no active devices
        """
        if not request.user_id:
            raise ValidationError("User ID is required for user-based push")

        logger.info(f"Dispatching push to all devices for user: {request.user_id}")
        self.push_validation.validate_send_request(request)

        tokens = await self.device_tokens.get_user_tokens(request.user_id)
        if not tokens:
            raise DeviceTokenNotFoundError(f"No active device tokens found for user: {request.user_id}")
        self._claim(request.event_id)

        receipts = []
        for device_token in tokens:
            push_request = self._for_device(request, device_token)
            notification = await self.push_delivery.create_pending_notification(push_request, device_token)
            task = self.push_delivery.deliver_async(push_request, notification.id, device_token)
            receipts.append(self._receipt("push", notification.id, "Push notification accepted", task))

        self.idempotency.mark_as_processed(request.event_id, receipts[0].notification_id)
        logger.info(f"Accepted push for {len(receipts)} device(s) of user {request.user_id}")
        return receipts

    async def get_email_status(self, notification_id: str) -> EmailNotification:
        """
        Raises:
            NotificationNotFoundError: If the id is unknown
        """
        notification = await self.email_delivery.repository.find_by_id(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Email notification not found: {notification_id}")
        return notification

    async def get_push_status(self, notification_id: str) -> PushNotification:
        notification = await self.push_delivery.repository.find_by_id(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Push notification not found: {notification_id}")
        return notification

    def _claim(self, event_id: Optional[str]) -> None:
        if not self.idempotency.is_first_processing(event_id):
            raise DuplicateNotificationError(event_id, self.idempotency.get_processing_status(event_id))

    async def _resolve_device_token(self, request: PushRequest) -> DeviceToken:
        if request.device_token:
            return await self.device_tokens.get_active_token_by_value(request.device_token)

        tokens = await self.device_tokens.get_user_tokens(request.user_id)
        if not tokens:
            raise DeviceTokenNotFoundError(f"No active device tokens found for user: {request.user_id}")
        return tokens[0]

    @staticmethod
    def _for_device(request: PushRequest, device_token: DeviceToken) -> PushRequest:
        return dataclasses.replace(
            request,
            device_token=device_token.device_token,
            platform=device_token.platform,
            user_id=device_token.user_id,
        )

    @staticmethod
    def _receipt(channel: str, notification_id: str, message: str,
                 task: Optional[asyncio.Task]) -> DeliveryReceipt:
        return DeliveryReceipt(
            notification_id=notification_id,
            status=NotificationStatus.PENDING,
            message=message,
            status_check_url=STATUS_PATH.format(channel=channel, notification_id=notification_id),
            task=task,
        )
