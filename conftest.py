"""Test configuration and utilities."""

from typing import List, Optional
from unittest.mock import AsyncMock

import fakeredis
import pytest

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
    DeviceToken,
    EmailProviderType,
    EmailRequest,
    Platform,
    PushProviderType,
    PushRequest,
)
from src.core.interfaces import AuditSink, EmailProvider, PushProvider
from src.core.resilience import RetryConfig, RetryPolicy, is_retryable
from src.core.usecases import AuditEventPublisher, DeviceTokenService
from src.providers.cache import RedisCacheProvider
from src.providers.exceptions import EmailProviderError, PushProviderError
from src.providers.storage import MemoryStorage


class FakeEmailProvider(EmailProvider):
    """Email provider failing its first ``failures`` sends (every send when negative)."""

    def __init__(self, provider_type: EmailProviderType = EmailProviderType.SMTP,
                 failures: int = 0, error: Optional[Exception] = None,
                 priority: int = 10, enabled: bool = True, configured: bool = True,
                 circuit_breaker=None):
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self._provider_type = provider_type
        self.failures = failures
        self.error = error or EmailProviderError("SMTP connection refused")
        self.configured = configured
        self.calls = 0
        self.sent: List[EmailRequest] = []

    @property
    def provider_type(self) -> EmailProviderType:
        return self._provider_type

    def is_configured(self) -> bool:
        return self.configured

    async def send(self, request: EmailRequest) -> Optional[str]:
        self.calls += 1
        if self.failures < 0 or self.calls <= self.failures:
            raise self.error
        self.sent.append(request)
        return f"<{self.calls}@{self._provider_type.value}.test>"


class FakePushProvider(PushProvider):
    """Push provider failing its first ``failures`` sends (every send when negative)."""

    def __init__(self, provider_type: PushProviderType = PushProviderType.FCM,
                 failures: int = 0, error: Optional[Exception] = None,
                 priority: int = 10, enabled: bool = True, configured: bool = True,
                 circuit_breaker=None):
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self._provider_type = provider_type
        self.failures = failures
        self.error = error or PushProviderError("Service temporarily unavailable")
        self.configured = configured
        self.calls = 0
        self.sent: List[PushRequest] = []

    @property
    def provider_type(self) -> PushProviderType:
        return self._provider_type

    def is_configured(self) -> bool:
        return self.configured

    async def send(self, request: PushRequest) -> Optional[str]:
        self.calls += 1
        if self.failures < 0 or self.calls <= self.failures:
            raise self.error
        self.sent.append(request)
        return f"{self._provider_type.value}-message-{self.calls}"


class RecordingAuditSink(AuditSink):
    """Audit sink keeping every event it receives."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.events: List[AuditEvent] = []

    async def publish(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return self.accept

    async def health_check(self) -> bool:
        return True

    def event_types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


@pytest.fixture
def email_provider_factory():
    """Factory building fake email providers."""
    return FakeEmailProvider


@pytest.fixture
def push_provider_factory():
    """Factory building fake push providers."""
    return FakePushProvider


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def audit_publisher(audit_sink):
    return AuditEventPublisher([audit_sink])


@pytest.fixture
def retry_policy_factory():
    """Build retry policies whose backoff never actually sleeps."""

    def _make(max_attempts: int = 3, retryable=is_retryable, name: str = "test-delivery"):
        return RetryPolicy(
            RetryConfig(max_attempts=max_attempts, initial_delay=0.01, multiplier=2.0, max_delay=0.1),
            name=name,
            sleep=AsyncMock(),
            retryable=retryable,
        )

    return _make


@pytest.fixture
def redis_client():
    """In-process Redis with Lua scripting support."""
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def redis_cache(redis_client):
    return RedisCacheProvider(client=redis_client)


@pytest.fixture
def email_request():
    return EmailRequest(
        to=["alice@example.com"],
        subject="Your order has shipped",
        body="Order #1001 is on its way.",
        user_id="user-42",
        event_id="order-1001-shipped",
        service_id="order-service",
    )


@pytest.fixture
def push_request():
    return PushRequest(
        device_token="fcm-token-abc123",
        title="Order shipped",
        body="Order #1001 is on its way.",
        data={"order_id": "1001"},
        user_id="user-42",
        event_id="order-1001-push",
        service_id="order-service",
    )


@pytest.fixture
def android_token():
    return DeviceToken(user_id="user-42", device_token="fcm-token-abc123", platform=Platform.ANDROID)


@pytest.fixture
def ios_token():
    return DeviceToken(user_id="user-42", device_token="apns-token-def456", platform=Platform.IOS)


@pytest.fixture
def email_pipeline_factory(memory_storage, retry_policy_factory, audit_publisher):
    """Build an email delivery service over memory storage and the given providers."""

    def _make(providers, max_attempts: int = 3, active_provider=EmailProviderType.SMTP,
              fallback_to_priority: bool = False, max_concurrency: int = 10):
        selector = EmailProviderSelector(providers, active_provider, fallback_to_priority)
        repository = memory_storage.email_notifications
        return EmailDeliveryService(
            selector,
            repository,
            BatchWriter("email", repository, flush_interval=0.05, poll_interval=0.01),
            retry_policy_factory(max_attempts=max_attempts),
            DeliveryExecutor("email-async", max_concurrency=max_concurrency),
            audit_publisher=audit_publisher,
            default_from_address="noreply@example.com",
        )

    return _make


@pytest.fixture
def push_pipeline_factory(memory_storage, retry_policy_factory, audit_publisher):
    """Build a push delivery service over memory storage and the given providers."""

    def _make(providers, max_attempts: int = 3, active_provider=PushProviderType.FCM):
        selector = PushProviderSelector(providers, active_provider)
        repository = memory_storage.push_notifications
        return PushDeliveryService(
            selector,
            repository,
            BatchWriter("push", repository, flush_interval=0.05, poll_interval=0.01),
            retry_policy_factory(max_attempts=max_attempts, retryable=is_push_retryable),
            DeliveryExecutor("push-async"),
            audit_publisher=audit_publisher,
            device_token_service=DeviceTokenService(memory_storage.device_tokens),
        )

    return _make
