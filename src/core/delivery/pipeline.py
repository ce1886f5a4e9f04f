"""Shared delivery pipeline: select, send with retry, record the outcome."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Optional, Type, TypeVar

from src.core.batching import BatchWriter
from src.core.entities import AuditEvent, Notification, NotificationStatus
from src.core.exceptions import InvalidStatusTransitionError, NotificationSendException
from src.core.interfaces import DeliveryProvider, NotificationRepository
from src.core.resilience import RetryPolicy

from .executor import DeliveryExecutor
from .provider_selector import ProviderSelector

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Notification)


class DeliveryPipeline(ABC, Generic[T]):
    """
    Template for channel delivery services.

    Every send goes through ``retry(circuit_breaker(provider.send))``: the
    provider's breaker (when it has one) guards each individual attempt and
    the retry policy wraps the guarded call, so an open breaker fails the
    attempt immediately instead of being hammered by retries.

    Subclasses supply provider selection, record construction and audit
    events through the abstract hooks; ``context`` is whatever extra
    channel data a subclass needs (the device token for push).
    """

    entity_type = "NOTIFICATION"
    send_exception: Type[NotificationSendException] = NotificationSendException

    def __init__(
        self,
        selector: ProviderSelector,
        repository: NotificationRepository[T],
        batch_writer: BatchWriter[T],
        retry_policy: RetryPolicy,
        executor: DeliveryExecutor,
        audit_publisher=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the pipeline.

        Args:
            selector: Provider selector for this channel
            repository: Repository for direct reads and writes
            batch_writer: Write-behind buffer for concluded deliveries
            retry_policy: Backoff policy wrapping each send
            executor: Pool running asynchronous deliveries
            audit_publisher: Optional fire-and-forget audit publisher
            clock: Monotonic time source used for processing durations
        """
        self.selector = selector
        self.repository = repository
        self.batch_writer = batch_writer
        self.retry_policy = retry_policy
        self.executor = executor
        self.audit_publisher = audit_publisher
        self._clock = clock

    @abstractmethod
    def _select_provider(self, request, context: Any) -> DeliveryProvider:
        pass

    @abstractmethod
    def _build_record(self, request, context: Any, status: NotificationStatus,
                      provider_type=None) -> T:
        pass

    @abstractmethod
    def _success_event(self, notification: T, request, context: Any) -> AuditEvent:
        pass

    @abstractmethod
    def _failure_event(self, notification: T, request, context: Any,
                       error: BaseException) -> AuditEvent:
        pass

    async def _on_delivery_failure(self, error: BaseException, request, context: Any) -> None:
        """Side effects run after retries are exhausted, before FAILED is recorded."""
        pass

    async def _create_pending(self, request, context: Any = None) -> T:
        notification = self._build_record(request, context, NotificationStatus.PENDING)
        await self.repository.save(notification)
        logger.info(f"Created PENDING {self.entity_type.lower()}: {notification.id}")
        return notification

    async def _deliver(self, request, context: Any = None) -> T:
        provider = self._select_provider(request, context)
        notification = self._build_record(
            request, context, NotificationStatus.PROCESSING, provider.provider_type
        )
        start = self._clock()

        try:
            message_id = await self._send_with_retry(provider, request)
        except Exception as e:
            raise await self._deliver_fallback(notification, request, context, e) from e

        notification.mark_sent(provider.provider_type, self._elapsed_ms(start))
        self._apply_message_id(notification, message_id)
        await self._persist(notification)

        logger.info(
            f"{self.entity_type} {notification.id} delivered via "
            f"{provider.provider_type.name} in {notification.processing_time_ms}ms"
        )
        self._publish(self._success_event(notification, request, context))
        return notification

    def _deliver_async(self, request, notification_id: str, context: Any = None) -> asyncio.Task:
        return self.executor.submit(
            self._process_async(request, notification_id, context),
            task_name=f"{self.executor.name}-{notification_id}",
        )

    async def _process_async(self, request, notification_id: str, context: Any) -> None:
        logger.info(f"Starting async delivery for {self.entity_type.lower()}: {notification_id}")

        notification = await self.repository.find_by_id(notification_id)
        if notification is None:
            logger.error(f"{self.entity_type} not found for async delivery: {notification_id}")
            return

        try:
            notification.mark_processing()
        except InvalidStatusTransitionError as e:
            logger.warning(f"Skipping async delivery of {notification_id}: {e}")
            return
        await self.repository.save(notification)

        start = self._clock()
        try:
            provider = self._select_provider(request, context)
            notification.provider_type = provider.provider_type
            message_id = await self._send_with_retry(provider, request)
        except Exception as e:
            await self._deliver_async_fallback(notification, request, context, e)
            return

        notification.mark_sent(provider.provider_type, self._elapsed_ms(start))
        self._apply_message_id(notification, message_id)
        await self._persist(notification)

        logger.info(
            f"Async {self.entity_type.lower()} {notification_id} delivered via "
            f"{provider.provider_type.name} in {notification.processing_time_ms}ms"
        )
        self._publish(self._success_event(notification, request, context))

    async def _send_with_retry(self, provider: DeliveryProvider, request) -> Optional[str]:
        breaker = provider.circuit_breaker

        async def attempt():
            if breaker is not None:
                return await breaker.call_async(provider.send, request)
            return await provider.send(request)

        return await self.retry_policy.execute(attempt)

    async def _deliver_fallback(self, notification: T, request, context: Any,
                                error: BaseException) -> NotificationSendException:
        """Record the terminal failure and build the exception surfaced to the caller."""
        logger.error(f"All retry attempts exhausted for {notification.id}: {error}")

        try:
            await self._on_delivery_failure(error, request, context)
        except Exception as e:
            logger.error(f"Failure handling for {notification.id} raised: {e}")
        notification.mark_failed(error)
        try:
            await self.repository.save(notification)
        except Exception as e:
            logger.error(f"Failed to persist FAILED record {notification.id}: {e}")

        self._publish(self._failure_event(notification, request, context, error))
        return self.send_exception(
            f"Failed to deliver {self.entity_type.lower()}: {error}",
            cause=error,
            notification_id=notification.id,
        )

    async def _deliver_async_fallback(self, notification: T, request, context: Any,
                                      error: BaseException) -> None:
        logger.error(
            f"Async delivery fallback triggered for {notification.id}: {error}"
        )
        try:
            await self._on_delivery_failure(error, request, context)
        except Exception as e:
            logger.error(f"Failure handling for {notification.id} raised: {e}")

        notification.mark_failed(f"All retry attempts failed: {error}")
        await self._persist(notification)
        self._publish(self._failure_event(notification, request, context, error))

    async def _persist(self, notification: T) -> None:
        try:
            await self.batch_writer.enqueue(notification)
        except Exception as e:
            logger.error(f"Error enqueueing {notification.id}, saving synchronously: {e}")
            await self.repository.save(notification)

    def _publish(self, event: AuditEvent) -> None:
        if self.audit_publisher is None:
            return
        try:
            self.audit_publisher.publish(event)
        except Exception as e:
            logger.error(f"Failed to publish audit event {event.event_type.value}: {e}")

    def _apply_message_id(self, notification: T, message_id: Optional[str]) -> None:
        pass

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)
