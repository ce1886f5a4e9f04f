"""Email delivery service."""

import asyncio
import logging
from typing import Any, Optional

from src.core.entities import (
    AuditEvent,
    AuditEventType,
    EmailNotification,
    EmailRequest,
    NotificationStatus,
)
from src.core.interfaces import DeliveryProvider

from .pipeline import DeliveryPipeline

logger = logging.getLogger(__name__)


class EmailDeliveryService(DeliveryPipeline[EmailNotification]):
    """Delivers emails through the active email provider."""

    entity_type = "EMAIL_NOTIFICATION"

    def __init__(self, *args, default_from_address: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.default_from_address = default_from_address

    async def create_pending_notification(self, request: EmailRequest) -> EmailNotification:
        """
        Create and store a PENDING record ahead of asynchronous delivery.

        Args:
            request: Email to deliver later

        Returns:
            The stored PENDING notification
        """
        return await self._create_pending(request)

    async def deliver(self, request: EmailRequest) -> EmailNotification:
        """
        Deliver an email and wait for the outcome.

        Args:
            request: Email to deliver

        Returns:
            The SENT notification

        Raises:
            ProviderNotAvailableError: If no email provider is available
            NotificationSendException: If delivery failed after all retries;
                the FAILED record is stored before this is raised
        """
        return await self._deliver(request)

    def deliver_async(self, request: EmailRequest, notification_id: str) -> asyncio.Task:
        """
        Deliver a previously created PENDING email in the background.

        Returns:
            The background task; it never raises
        """
        return self._deliver_async(request, notification_id)

    def _select_provider(self, request: EmailRequest, context: Any) -> DeliveryProvider:
        return self.selector.select_provider()

    def _build_record(self, request: EmailRequest, context: Any, status: NotificationStatus,
                      provider_type=None) -> EmailNotification:
        return EmailNotification(
            to=list(request.to),
            cc=list(request.cc),
            bcc=list(request.bcc),
            from_address=request.from_address or self.default_from_address,
            subject=request.subject,
            body=request.body,
            template_id=request.template_id,
            attachment_urls=[attachment.filename for attachment in request.attachments],
            user_id=request.user_id,
            event_id=request.event_id,
            service_id=request.service_id,
            status=status,
            provider_type=provider_type,
        )

    def _success_event(self, notification: EmailNotification, request: EmailRequest,
                       context: Any) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EMAIL_SENT,
            entity_id=notification.id,
            entity_type=self.entity_type,
            action="SEND_EMAIL",
            user_id=notification.user_id,
            metadata={
                "recipients": len(request.all_recipients),
                "subject": request.subject,
                "provider": notification.provider_type.value if notification.provider_type else None,
                "processing_time_ms": notification.processing_time_ms,
            },
        )

    def _failure_event(self, notification: EmailNotification, request: EmailRequest,
                       context: Any, error: BaseException) -> AuditEvent:
        return AuditEvent.failure(
            AuditEventType.EMAIL_FAILED,
            error,
            entity_id=notification.id,
            entity_type=self.entity_type,
            action="SEND_EMAIL",
            user_id=notification.user_id,
            metadata={"retry_count": notification.retry_count},
        )
