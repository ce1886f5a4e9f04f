"""Service factory for creating provider instances based on configuration."""

import logging
from typing import List, Optional

from src.config import Config
from src.core.batching import BatchWriter
from src.core.delivery import (
    DeliveryExecutor,
    EmailDeliveryService,
    EmailProviderSelector,
    PushDeliveryService,
    PushProviderSelector,
    is_push_retryable,
)
from src.core.entities import (
    AuditEvent,
    AuditEventType,
    EmailProviderType,
    PushProviderType,
)
from src.core.interfaces import AuditSink, EmailProvider, PushProvider, StorageService
from src.core.ratelimit import InternalServiceRateLimiter, RateLimitSettings
from src.core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    RetryConfig,
    RetryPolicy,
    is_retryable,
)
from src.core.usecases import (
    AuditEventPublisher,
    DeviceTokenService,
    EmailValidationLimits,
    EmailValidationService,
    IdempotencyService,
    NotificationDispatcher,
    PushValidationLimits,
    PushValidationService,
)
from src.providers.audit import LoggingAuditSink, WebhookAuditSink
from src.providers.cache import CacheProvider, NoCacheProvider, RedisCacheProvider
from src.providers.email import SMTP_BREAKER_NAME, SendGridEmailProvider, SmtpEmailProvider
from src.providers.push import ApnsPushProvider, FcmPushProvider, WebPushProvider
from src.providers.storage import DatabaseStorage, MemoryStorage


logger = logging.getLogger(__name__)


class ServiceFactoryError(Exception):
    """Exception raised by ServiceFactory."""
    pass


class ServiceFactory:
    """Factory for creating service instances based on configuration.

    The circuit breaker registry and the audit publisher are created once
    per factory and shared by everything the factory builds afterwards.
    """

    def __init__(self, config: Config):
        """
        Initialize service factory with configuration.

        Args:
            config: Application configuration
        """
        self.config = config
        self._breakers: Optional[CircuitBreakerRegistry] = None
        self._audit_publisher: Optional[AuditEventPublisher] = None

    # Resilience

    def create_circuit_breaker_registry(self) -> CircuitBreakerRegistry:
        """Create (once) the registry owning every circuit breaker."""
        if self._breakers is None:
            section = self.config.circuit_breaker
            self._breakers = CircuitBreakerRegistry(
                default_config=self._breaker_config("default"),
                instance_configs={name: self._breaker_config(name) for name in section.instances},
                listener=self._on_breaker_transition,
            )
        return self._breakers

    def _breaker_config(self, name: str) -> CircuitBreakerConfig:
        settings = self.config.circuit_breaker.settings_for(name)
        return CircuitBreakerConfig(**settings.model_dump())

    def _optional_breaker(self, name: str) -> Optional[CircuitBreaker]:
        """Breakers for providers other than SMTP exist only when configured by name."""
        if name not in self.config.circuit_breaker.instances:
            return None
        return self.create_circuit_breaker_registry().get_or_create(name)

    def _on_breaker_transition(self, breaker: CircuitBreaker, old: CircuitState, new: CircuitState) -> None:
        if new is not CircuitState.OPEN or self._audit_publisher is None:
            return
        self._audit_publisher.publish(AuditEvent(
            event_type=AuditEventType.CIRCUIT_BREAKER_OPENED,
            entity_id=breaker.name,
            entity_type="CIRCUIT_BREAKER",
            action="OPEN_CIRCUIT",
            status="FAILURE",
            metadata={"previous_state": old.value},
        ))

    def create_retry_policy(self, channel: str) -> RetryPolicy:
        """
        Create the retry policy of a channel.

        Args:
            channel: "email" or "push"

        Returns:
            RetryPolicy instance
        """
        settings = getattr(self.config.retry, channel)
        return RetryPolicy(
            RetryConfig.from_millis(
                max_attempts=settings.max_attempts,
                initial_delay_ms=settings.initial_delay_ms,
                multiplier=settings.multiplier,
                max_delay_ms=settings.max_delay_ms,
                deadline_ms=settings.deadline_ms,
            ),
            name=f"{channel}-delivery",
            retryable=is_push_retryable if channel == "push" else is_retryable,
        )

    # Providers

    def create_email_providers(self) -> List[EmailProvider]:
        """
        Create every enabled email provider.

        Raises:
            ServiceFactoryError: If provider creation fails
        """
        email = self.config.email
        providers: List[EmailProvider] = []
        try:
            if email.smtp.enabled:
                providers.append(SmtpEmailProvider(
                    host=email.smtp.host,
                    port=email.smtp.port,
                    username=email.smtp.username,
                    password=email.smtp.password,
                    from_address=email.from_address,
                    use_tls=email.smtp.use_tls,
                    use_ssl=email.smtp.use_ssl,
                    timeout_seconds=email.smtp.timeout_seconds,
                    priority=email.smtp.priority,
                    circuit_breaker=self.create_circuit_breaker_registry().get_or_create(SMTP_BREAKER_NAME),
                ))
            if email.sendgrid.enabled:
                providers.append(SendGridEmailProvider(
                    api_key=email.sendgrid.api_key,
                    from_address=email.from_address,
                    api_url=email.sendgrid.api_url,
                    timeout_seconds=email.sendgrid.timeout_seconds,
                    priority=email.sendgrid.priority,
                    circuit_breaker=self._optional_breaker("sendgridProvider"),
                ))
        except Exception as e:
            raise ServiceFactoryError(f"Failed to create email providers: {e}") from e

        logger.debug(f"Created email providers: {[p.get_provider_name() for p in providers]}")
        return providers

    def create_push_providers(self) -> List[PushProvider]:
        """
        Create every enabled push provider.

        Raises:
            ServiceFactoryError: If provider creation fails
        """
        push = self.config.push
        providers: List[PushProvider] = []
        try:
            if push.fcm.enabled:
                providers.append(FcmPushProvider(
                    credentials_file=push.fcm.credentials_file,
                    dry_run=push.fcm.dry_run,
                    priority=push.fcm.priority,
                    circuit_breaker=self._optional_breaker("fcmProvider"),
                ))
            if push.apns.enabled:
                providers.append(ApnsPushProvider(
                    team_id=push.apns.team_id,
                    key_id=push.apns.key_id,
                    bundle_id=push.apns.bundle_id,
                    key_path=push.apns.key_path,
                    production=push.apns.production,
                    timeout_seconds=push.apns.timeout_seconds,
                    priority=push.apns.priority,
                    circuit_breaker=self._optional_breaker("apnsProvider"),
                ))
            if push.web.enabled:
                providers.append(WebPushProvider(
                    vapid_public_key=push.web.vapid_public_key,
                    vapid_private_key=push.web.vapid_private_key,
                    subject=push.web.subject,
                    priority=push.web.priority,
                    circuit_breaker=self._optional_breaker("webPushProvider"),
                ))
        except Exception as e:
            raise ServiceFactoryError(f"Failed to create push providers: {e}") from e

        logger.debug(f"Created push providers: {[p.get_provider_name() for p in providers]}")
        return providers

    def create_email_selector(self, providers: List[EmailProvider]) -> EmailProviderSelector:
        try:
            return EmailProviderSelector(
                providers,
                active_provider=EmailProviderType(self.config.email.active_provider),
                fallback_to_priority=self.config.email.fallback_to_priority,
            )
        except ValueError as e:
            raise ServiceFactoryError(f"Failed to create email provider selector: {e}") from e

    def create_push_selector(self, providers: List[PushProvider]) -> PushProviderSelector:
        try:
            return PushProviderSelector(
                providers,
                active_provider=PushProviderType(self.config.push.active_provider),
                fallback_to_priority=self.config.push.fallback_to_priority,
            )
        except ValueError as e:
            raise ServiceFactoryError(f"Failed to create push provider selector: {e}") from e

    # Storage and shared store

    def create_storage_service(self) -> StorageService:
        """
        Create storage service based on configuration.

        Returns:
            StorageService instance

        Raises:
            ServiceFactoryError: If provider creation fails
        """
        storage = self.config.storage_service
        logger.debug(f"Creating storage service: {storage.type}")

        try:
            storage_type = storage.type.lower()

            if storage_type == "memory":
                return MemoryStorage()
            elif storage_type == "database":
                return DatabaseStorage(
                    database_path=storage.database_path,
                    connection_timeout=storage.connection_timeout,
                    echo=storage.echo,
                )
            else:
                raise ServiceFactoryError(f"Unknown storage service type: {storage.type}")

        except ServiceFactoryError:
            raise
        except Exception as e:
            raise ServiceFactoryError(f"Failed to create storage service: {e}") from e

    def create_cache_provider(self) -> CacheProvider:
        """
        Create the shared-store client.

        A Redis that cannot be reached yields a disconnected provider rather
        than an error; dependent features fail open.
        """
        cache_type = self.config.cache.type.lower()
        logger.debug(f"Creating cache provider: {cache_type}")

        if cache_type == "redis":
            return RedisCacheProvider(redis_url=self.config.redis_url)
        if cache_type == "none":
            return NoCacheProvider()
        raise ServiceFactoryError(f"Unknown cache type: {self.config.cache.type}")

    def create_rate_limiter(self, cache: CacheProvider) -> Optional[InternalServiceRateLimiter]:
        """
        Create the internal rate limiter.

        Returns:
            The limiter, or None when rate limiting is disabled or no Redis is configured
        """
        rate_limit = self.config.rate_limit
        if not rate_limit.enabled:
            logger.info("Rate limiting is disabled")
            return None
        if not isinstance(cache, RedisCacheProvider) or cache.client is None:
            logger.warning("Rate limiting requires Redis, rate limiter not created")
            return None

        settings = RateLimitSettings(
            enabled=rate_limit.enabled,
            window_seconds=rate_limit.window_seconds,
            global_requests_per_minute=rate_limit.global_limit.requests_per_minute,
            per_service_enabled=rate_limit.per_service.enabled,
            per_service_requests_per_minute=rate_limit.per_service.requests_per_minute,
        )
        return InternalServiceRateLimiter(cache.client, settings)

    # Pipeline components

    def create_batch_writer(self, name: str, repository) -> BatchWriter:
        settings = self.config.batch_writer
        return BatchWriter(
            name,
            repository,
            batch_size=settings.batch_size,
            queue_capacity=settings.queue_capacity,
            flush_interval=settings.flush_interval_ms / 1000.0,
            offer_timeout=settings.offer_timeout_ms / 1000.0,
        )

    def create_executor(self, channel: str) -> DeliveryExecutor:
        max_concurrency = getattr(self.config.executors, f"{channel}_max_concurrency")
        return DeliveryExecutor(f"{channel}-async", max_concurrency=max_concurrency)

    def create_audit_publisher(self) -> AuditEventPublisher:
        """
        Create (once) the audit publisher with its configured sinks.

        Raises:
            ServiceFactoryError: If a sink cannot be created
        """
        if self._audit_publisher is not None:
            return self._audit_publisher

        audit = self.config.audit
        sinks: List[AuditSink] = []
        try:
            for sink_name in audit.sinks:
                if sink_name == "logging":
                    sinks.append(LoggingAuditSink())
                elif sink_name == "webhook":
                    sinks.append(WebhookAuditSink(
                        webhook_url=audit.webhook_url,
                        timeout_seconds=audit.webhook_timeout_seconds,
                        max_retries=audit.webhook_max_retries,
                    ))
                else:
                    raise ServiceFactoryError(f"Unknown audit sink: {sink_name}")
        except ServiceFactoryError:
            raise
        except Exception as e:
            raise ServiceFactoryError(f"Failed to create audit sinks: {e}") from e

        self._audit_publisher = AuditEventPublisher(sinks, enabled=audit.enabled)
        return self._audit_publisher

    def create_email_delivery_service(
        self,
        selector: EmailProviderSelector,
        storage: StorageService,
        batch_writer: BatchWriter,
        executor: DeliveryExecutor,
    ) -> EmailDeliveryService:
        return EmailDeliveryService(
            selector,
            storage.email_notifications,
            batch_writer,
            self.create_retry_policy("email"),
            executor,
            audit_publisher=self.create_audit_publisher(),
            default_from_address=self.config.email.from_address,
        )

    def create_push_delivery_service(
        self,
        selector: PushProviderSelector,
        storage: StorageService,
        batch_writer: BatchWriter,
        executor: DeliveryExecutor,
        device_tokens: DeviceTokenService,
    ) -> PushDeliveryService:
        return PushDeliveryService(
            selector,
            storage.push_notifications,
            batch_writer,
            self.create_retry_policy("push"),
            executor,
            audit_publisher=self.create_audit_publisher(),
            device_token_service=device_tokens,
        )

    # Use cases

    def create_idempotency_service(self, cache: CacheProvider) -> IdempotencyService:
        return IdempotencyService(
            cache,
            ttl_hours=self.config.idempotency.ttl_hours,
            enabled=self.config.idempotency.enabled,
        )

    def create_dispatcher(
        self,
        email_delivery: EmailDeliveryService,
        push_delivery: PushDeliveryService,
        device_tokens: DeviceTokenService,
        idempotency: IdempotencyService,
    ) -> NotificationDispatcher:
        email_limits = EmailValidationLimits(**self.config.email.validation.model_dump())
        push_limits = PushValidationLimits(**self.config.push.validation.model_dump())
        return NotificationDispatcher(
            email_delivery,
            push_delivery,
            device_tokens,
            idempotency,
            email_validation=EmailValidationService(email_limits),
            push_validation=PushValidationService(push_limits),
        )
