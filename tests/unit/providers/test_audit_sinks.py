"""Unit tests for the audit sink providers."""

import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from src.core.entities import AuditEvent, AuditEventType
from src.providers.audit import LoggingAuditSink, WebhookAuditSink
from src.providers.exceptions import AuditError

WEBHOOK_URL = "https://audit.example.com/api/v1/events"


@pytest.fixture
def event():
    return AuditEvent(
        event_type=AuditEventType.EMAIL_SENT,
        entity_id="n-1",
        entity_type="EMAIL_NOTIFICATION",
        user_id="user-42",
        metadata={"provider": "smtp"},
    )


def _mock_response(status, text=""):
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=text)
    return response


class TestLoggingAuditSink:
    """Test suite for the logging audit sink."""

    @pytest.mark.asyncio
    async def test_success_event_logged_at_info(self, event, caplog):
        sink = LoggingAuditSink()

        with caplog.at_level(logging.INFO, logger="herald.audit"):
            assert await sink.publish(event) is True

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        payload = json.loads(record.getMessage())
        assert payload["event_type"] == "email_sent"
        assert payload["user_id"] == "user-42"

    @pytest.mark.asyncio
    async def test_failure_event_logged_at_warning(self, caplog):
        sink = LoggingAuditSink(logger_name="herald.audit.test")
        failure = AuditEvent.failure(AuditEventType.EMAIL_FAILED, "SMTP connection refused", entity_id="n-2")

        with caplog.at_level(logging.INFO, logger="herald.audit.test"):
            await sink.publish(failure)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert json.loads(record.getMessage())["error_message"] == "SMTP connection refused"
        assert await sink.health_check() is True


class TestWebhookAuditSink:
    """Test suite for the webhook audit sink."""

    def test_init(self):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL, custom_headers={"X-Api-Key": "k"})

        assert sink.webhook_url == WEBHOOK_URL
        assert sink.health_url == WEBHOOK_URL
        assert sink.max_retries == 2
        assert sink._get_headers()["X-Api-Key"] == "k"
        assert sink._get_headers()["User-Agent"] == "Herald-Notification-Service/1.0"

    def test_init_without_url_raises_error(self, monkeypatch):
        monkeypatch.delenv("AUDIT_WEBHOOK_URL", raising=False)

        with pytest.raises(AuditError, match="Audit webhook URL not configured"):
            WebhookAuditSink()

    def test_init_from_environment(self, monkeypatch):
        monkeypatch.setenv("AUDIT_WEBHOOK_URL", "https://audit-from-env.example.com/events")

        assert WebhookAuditSink().webhook_url == "https://audit-from-env.example.com/events"

    def test_invalid_urls(self):
        with pytest.raises(AuditError, match="Invalid audit webhook URL format"):
            WebhookAuditSink(webhook_url="not-a-url")
        with pytest.raises(AuditError, match="must use HTTP or HTTPS"):
            WebhookAuditSink(webhook_url="ftp://audit.example.com/events")

    @pytest.mark.asyncio
    async def test_publish_success(self, event):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL, retry_delay=0)

        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value = _mock_response(202)
            mock_post.return_value.__aexit__.return_value = False

            assert await sink.publish(event) is True

        mock_post.assert_called_once()
        assert mock_post.call_args[1]["json"]["entity_id"] == "n-1"

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, event):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL, retry_delay=0)

        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value = _mock_response(400, "bad event")
            mock_post.return_value.__aexit__.return_value = False

            assert await sink.publish(event) is False

        assert mock_post.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, event):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL, max_retries=2, retry_delay=0)

        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.side_effect = [
                _mock_response(503), _mock_response(502), _mock_response(201),
            ]
            mock_post.return_value.__aexit__.return_value = False

            assert await sink.publish(event) is True

        assert mock_post.call_count == 3

    @pytest.mark.asyncio
    async def test_network_errors_exhaust_retries(self, event):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL, max_retries=1, retry_delay=0)

        with patch("aiohttp.ClientSession.post", side_effect=aiohttp.ClientError("connection reset")) as mock_post:
            assert await sink.publish(event) is False

        assert mock_post.call_count == 2

    @pytest.mark.asyncio
    async def test_health_check(self):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL, health_url="https://audit.example.com/health")

        with patch("aiohttp.ClientSession.get") as mock_get:
            mock_get.return_value.__aenter__.return_value = _mock_response(404)
            mock_get.return_value.__aexit__.return_value = False

            assert await sink.health_check() is True

        assert mock_get.call_args[0][0] == "https://audit.example.com/health"

        with patch("aiohttp.ClientSession.get") as mock_get:
            mock_get.return_value.__aenter__.return_value = _mock_response(503)
            mock_get.return_value.__aexit__.return_value = False

            assert await sink.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_connection_error(self):
        sink = WebhookAuditSink(webhook_url=WEBHOOK_URL)

        with patch("aiohttp.ClientSession.get", side_effect=aiohttp.ClientError("refused")):
            assert await sink.health_check() is False
