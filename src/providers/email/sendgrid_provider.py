"""SendGrid email provider using the v3 mail send API."""

import base64
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ...core.entities import EmailProviderType, EmailRequest
from ...core.interfaces import EmailProvider
from ...core.resilience import CircuitBreaker
from ..exceptions import EmailProviderError

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridEmailProvider(EmailProvider):
    """Sends email through the SendGrid HTTP API."""

    def __init__(
        self,
        api_key: Optional[str],
        from_address: Optional[str] = None,
        api_url: str = SENDGRID_API_URL,
        timeout_seconds: int = 30,
        priority: int = 5,
        enabled: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds

    @property
    def provider_type(self) -> EmailProviderType:
        return EmailProviderType.SENDGRID

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, request: EmailRequest) -> Optional[str]:
        """
        Send an email through SendGrid.

        Returns:
            The ``X-Message-Id`` reported by SendGrid, if any

        Raises:
            EmailProviderError: If SendGrid rejects the request or is unreachable
        """
        logger.info(f"SendGrid provider sending to: {request.to}")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    json=self._build_payload(request),
                    headers=self._get_headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    if response.status in (200, 202):
                        message_id = response.headers.get("X-Message-Id")
                        logger.info(f"SendGrid accepted email to {request.to}: {message_id}")
                        return message_id

                    response_text = await response.text()
                    raise EmailProviderError(
                        f"SendGrid returned HTTP {response.status}: {response_text}"
                    )
        except aiohttp.ClientError as e:
            raise EmailProviderError(f"SendGrid request failed: {e}") from e

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": "Herald-Notification-Service/1.0",
        }

    def _build_payload(self, request: EmailRequest) -> Dict[str, Any]:
        personalization: Dict[str, List[Dict[str, str]]] = {
            "to": [{"email": address} for address in request.to],
        }
        if request.cc:
            personalization["cc"] = [{"email": address} for address in request.cc]
        if request.bcc:
            personalization["bcc"] = [{"email": address} for address in request.bcc]

        payload: Dict[str, Any] = {
            "personalizations": [personalization],
            "from": {"email": request.from_address or self.from_address},
            "subject": request.subject,
            "content": [{
                "type": "text/html" if request.html else "text/plain",
                "value": request.body,
            }],
            "headers": {"X-Priority": str(request.priority.value)},
        }

        if request.attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(attachment.content).decode("ascii"),
                    "filename": attachment.filename,
                    "type": attachment.content_type,
                    "disposition": "attachment",
                }
                for attachment in request.attachments
            ]
        return payload

    def __str__(self) -> str:
        return f"SendGridEmailProvider(priority={self.priority}, enabled={self.enabled})"
