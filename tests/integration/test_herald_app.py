"""Integration tests wiring the whole application from configuration."""

import json
from unittest.mock import MagicMock, patch

import pytest
from aiohttp import test_utils

from src.config import Config
from src.core.entities import EmailRequest, NotificationStatus, Platform, PushRequest
from src.core.exceptions import NotificationSendException
from src.main import HeraldApp

SUBSCRIPTION = json.dumps({
    "endpoint": "https://updates.push.services.mozilla.com/wpush/v2/abc",
    "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"},
})


@pytest.fixture
def app_config():
    return Config(
        email={"from_address": "noreply@example.com", "smtp": {"host": "smtp.example.com"}},
        push={
            "active_provider": "web_push",
            "fcm": {"enabled": False},
            "web": {"enabled": True, "vapid_public_key": "pub", "vapid_private_key": "priv",
                    "subject": "mailto:ops@example.com"},
        },
        retry={"email": {"max_attempts": 2, "initial_delay_ms": 0}, "push": {"max_attempts": 1}},
        batch_writer={"flush_interval_ms": 50},
    )


@pytest.mark.integration
class TestHeraldApp:
    """End-to-end flows through a fully wired application."""

    @pytest.mark.asyncio
    async def test_email_sync_and_async(self, app_config):
        with patch("smtplib.SMTP") as mock_smtp:
            async with HeraldApp(config=app_config) as app:
                request = EmailRequest(
                    to=["alice@example.com"],
                    subject="Your order has shipped",
                    body="Order 1001 is on its way",
                    event_id="order-1001-shipped",
                )

                sent = await app.dispatcher.send_email(request)
                receipt = await app.dispatcher.send_email_async(
                    EmailRequest(to=["bob@example.com"], subject="Welcome", body="Hello Bob")
                )
                await receipt.task
                storage = app.services["storage_service"]

        assert sent.status == NotificationStatus.SENT
        assert mock_smtp.return_value.__enter__.return_value.send_message.call_count == 2
        for notification_id in (sent.id, receipt.notification_id):
            stored = await storage.email_notifications.find_by_id(notification_id)
            assert stored.status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_email_failure_is_recorded(self, app_config):
        with patch("smtplib.SMTP", side_effect=ConnectionRefusedError("refused")):
            async with HeraldApp(config=app_config) as app:
                with pytest.raises(NotificationSendException) as exc_info:
                    await app.dispatcher.send_email(
                        EmailRequest(to=["alice@example.com"], subject="s", body="b")
                    )
                storage = app.services["storage_service"]

        stored = await storage.email_notifications.find_by_id(exc_info.value.notification_id)
        assert stored.status == NotificationStatus.FAILED
        assert stored.retry_count == 1

    @pytest.mark.asyncio
    async def test_web_push_to_registered_device(self, app_config):
        response = MagicMock(status_code=201, headers={"Location": "https://push.example.com/m/1"})

        with patch("src.providers.push.webpush_provider.webpush", return_value=response):
            async with HeraldApp(config=app_config) as app:
                await app.device_tokens.register_token("user-42", SUBSCRIPTION, Platform.WEB)

                notification = await app.dispatcher.send_push(
                    PushRequest(device_token=SUBSCRIPTION, title="Order shipped", body="On its way")
                )

        assert notification.status == NotificationStatus.SENT
        assert notification.provider_message_id == "https://push.example.com/m/1"

    @pytest.mark.asyncio
    async def test_health_status(self, app_config):
        async with HeraldApp(config=app_config) as app:
            status = await app.get_service_health_status()

        assert status["overall_healthy"] is True
        assert set(status["services"]) == {"storage_service", "cache", "audit"}
        providers = status["delivery"]["providers"]
        assert providers["email"]["smtp"]["active"] is True
        assert providers["push"]["web_push"]["available"] is True
        assert "smtpProvider" in status["delivery"]["circuit_breakers"]

    @pytest.mark.asyncio
    async def test_uninitialized_app(self):
        app = HeraldApp(config=Config())

        with pytest.raises(RuntimeError, match="Application not initialized"):
            await app.get_service_health_status()
        with pytest.raises(RuntimeError, match="Application not initialized"):
            await app.start()


@pytest.mark.integration
class TestHeraldWebApp:
    """The HTTP surface: rate limiting gate in front of the dispatcher."""

    @pytest.fixture
    def limited_config(self, app_config):
        return app_config.model_copy(update={
            "cache": Config(cache={"type": "redis"}).cache,
            "rate_limit": Config(rate_limit={
                "global": {"requests_per_minute": 100},
                "per_service": {"requests_per_minute": 2},
            }).rate_limit,
        })

    @pytest.mark.asyncio
    async def test_rate_limit_gates_sends(self, limited_config, redis_client):
        email = {"to": ["alice@example.com"], "subject": "Order shipped", "body": "On its way"}
        headers = {"X-Service-Id": "order-service"}

        with patch("redis.from_url", return_value=redis_client), patch("smtplib.SMTP") as mock_smtp:
            async with HeraldApp(config=limited_config) as app:
                assert app.rate_limiter is not None
                async with test_utils.TestClient(test_utils.TestServer(app.create_web_app())) as client:
                    first = await client.post("/api/v1/notification/email", json=email, headers=headers)
                    second = await client.post("/api/v1/notification/email", json=email, headers=headers)
                    rejected = await client.post("/api/v1/notification/email", json=email, headers=headers)
                    other = await client.post("/api/v1/notification/email", json=email,
                                              headers={"X-Service-Id": "billing"})

                    sent = await first.json()
                    status = await client.get(f"/api/v1/notification/email/status/{sent['id']}")
                    status_body = await status.json()
                    rejected_body = await rejected.json()

        assert first.status == 200 and second.status == 200 and other.status == 200
        assert sent["status"] == "sent"
        assert first.headers["X-RateLimit-Remaining-Service"] == "1"
        assert rejected.status == 429
        assert rejected_body["code"] == "RATE_LIMIT_EXCEEDED"
        assert rejected_body["serviceId"] == "order-service"
        assert mock_smtp.return_value.__enter__.return_value.send_message.call_count == 3
        assert status.status == 200
        assert status_body["id"] == sent["id"]

    @pytest.mark.asyncio
    async def test_dispatcher_errors_map_to_responses(self, app_config):
        async with HeraldApp(config=app_config) as app:
            assert app.rate_limiter is None
            async with test_utils.TestClient(test_utils.TestServer(app.create_web_app())) as client:
                invalid = await client.post("/api/v1/notification/email",
                                            json={"to": ["not-an-email"], "subject": "s", "body": "b"})
                missing = await client.get("/api/v1/notification/push/status/unknown-id")
                no_device = await client.post("/api/v1/notification/push/async",
                                              json={"userId": "nobody", "title": "t", "body": "b"})
                invalid_body = await invalid.json()

        assert invalid.status == 400
        assert invalid_body["error"] == "VALIDATION_FAILED"
        assert missing.status == 404
        assert no_device.status == 404

    @pytest.mark.asyncio
    async def test_web_app_requires_initialization(self):
        with pytest.raises(RuntimeError, match="Application not initialized"):
            HeraldApp(config=Config()).create_web_app()
