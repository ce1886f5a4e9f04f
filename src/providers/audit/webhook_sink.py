"""Audit sink posting events to an HTTP endpoint."""

import asyncio
import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import aiohttp

from ...core.entities import AuditEvent
from ...core.interfaces import AuditSink
from ..exceptions import AuditError

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 201, 202, 204)
PERMANENT_ERROR_STATUSES = (400, 401, 403, 404, 405)


class WebhookAuditSink(AuditSink):
    """
    Posts audit events as JSON to an audit service endpoint.

    Transient failures are retried a bounded number of times; permanent
    HTTP errors are not.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        custom_headers: Optional[Dict[str, str]] = None,
        timeout_seconds: int = 10,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        health_url: Optional[str] = None,
    ):
        """
        Initialize the webhook audit sink.

        Args:
            webhook_url: Audit endpoint (can also be set via env AUDIT_WEBHOOK_URL)
            custom_headers: Additional HTTP headers to send
            timeout_seconds: Request timeout
            max_retries: Maximum retry attempts after the first
            retry_delay: Delay between retries in seconds
            health_url: Endpoint probed by health_check, defaults to webhook_url

        Raises:
            AuditError: If the webhook URL is missing or invalid
        """
        self.webhook_url = webhook_url or os.getenv("AUDIT_WEBHOOK_URL")
        self.custom_headers = custom_headers or {}
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        if not self.webhook_url:
            raise AuditError(
                "Audit webhook URL not configured. "
                "Set AUDIT_WEBHOOK_URL environment variable or provide audit.webhook_url in configuration."
            )

        parsed_url = urlparse(self.webhook_url)
        if not parsed_url.scheme or not parsed_url.netloc:
            raise AuditError(f"Invalid audit webhook URL format: {self.webhook_url}")
        if parsed_url.scheme not in ["http", "https"]:
            raise AuditError(f"Audit webhook URL must use HTTP or HTTPS: {self.webhook_url}")

        self.health_url = health_url or self.webhook_url

    async def publish(self, event: AuditEvent) -> bool:
        """
        Post an audit event.

        Returns:
            True if the endpoint accepted the event, False otherwise

        Raises:
            AuditError: If the payload could not be built
        """
        logger.debug(f"Publishing audit event {event.event_type.value} for {event.entity_id}")

        try:
            payload = event.to_payload()
        except Exception as e:
            raise AuditError(f"Failed to build audit payload: {e}") from e

        return await self._send_with_retries(payload)

    async def health_check(self) -> bool:
        """
        Check that the audit endpoint answers.

        Returns:
            True if the endpoint responded below HTTP 500
        """
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.health_url,
                    headers=self._get_headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    return response.status < 500
        except Exception as e:
            logger.error(f"Audit webhook health check error: {e}")
            return False

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Herald-Notification-Service/1.0",
        }
        headers.update(self.custom_headers)
        return headers

    async def _send_with_retries(self, payload: Dict[str, Any]) -> bool:
        last_exception = None

        for attempt in range(self.max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.webhook_url,
                        json=payload,
                        headers=self._get_headers(),
                        timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                    ) as response:

                        if response.status in SUCCESS_STATUSES:
                            logger.debug(f"Audit event accepted: HTTP {response.status}")
                            return True

                        response_text = await response.text()
                        logger.warning(f"Audit webhook returned HTTP {response.status}: {response_text}")

                        if response.status in PERMANENT_ERROR_STATUSES:
                            logger.error(f"Permanent error from audit webhook: HTTP {response.status}")
                            return False

                        if attempt < self.max_retries:
                            await asyncio.sleep(self.retry_delay)

            except Exception as e:
                last_exception = e
                logger.warning(f"Audit webhook attempt {attempt + 1} failed: {e}")

                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay)

        if last_exception:
            logger.error(f"All audit webhook attempts failed. Last error: {last_exception}")

        return False

    def __str__(self) -> str:
        masked_url = (
            self.webhook_url[:50] + "..."
            if len(self.webhook_url) > 50
            else self.webhook_url
        )
        return f"WebhookAuditSink(url={masked_url})"
