"""SMTP email provider."""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import List, Optional

from ...core.entities import EmailProviderType, EmailRequest
from ...core.interfaces import EmailProvider
from ...core.resilience import CircuitBreaker
from ..exceptions import EmailProviderError

logger = logging.getLogger(__name__)

SMTP_BREAKER_NAME = "smtpProvider"


class SmtpEmailProvider(EmailProvider):
    """
    Sends email through an SMTP relay.

    smtplib is blocking, so every send runs in a worker thread. The
    provider is unavailable while its circuit breaker is open.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_address: Optional[str] = None,
        use_tls: bool = True,
        use_ssl: bool = False,
        timeout_seconds: float = 30.0,
        priority: int = 10,
        enabled: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize the SMTP provider.

        Args:
            host: SMTP server host
            port: SMTP server port
            username: Login user, None to skip authentication
            password: Login password
            from_address: Default sender when the request has none
            use_tls: Upgrade the connection with STARTTLS
            use_ssl: Connect with implicit TLS (SMTP_SSL)
            timeout_seconds: Socket timeout
            priority: Selection priority
            enabled: Whether the provider is enabled
            circuit_breaker: Breaker guarding sends
        """
        super().__init__(priority=priority, enabled=enabled, circuit_breaker=circuit_breaker)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout_seconds = timeout_seconds

    @property
    def provider_type(self) -> EmailProviderType:
        return EmailProviderType.SMTP

    def is_configured(self) -> bool:
        return bool(self.host and self.from_address)

    def is_available(self) -> bool:
        available = super().is_available()
        if not available and self.circuit_breaker is not None and self.circuit_breaker.is_open():
            logger.warning("SMTP circuit breaker is OPEN - provider unavailable")
        return available

    async def send(self, request: EmailRequest) -> Optional[str]:
        """
        Send an email.

        Returns:
            The generated Message-ID

        Raises:
            EmailProviderError: If the SMTP exchange fails
        """
        message = self.build_message(request)
        try:
            await asyncio.to_thread(self._send_message, message, request.all_recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed for: {request.to}: {e}")
            raise EmailProviderError(f"SMTP send failed: {e}") from e

        logger.info(f"Email sent successfully to: {request.to}")
        return message["Message-ID"]

    def build_message(self, request: EmailRequest) -> EmailMessage:
        """Build the MIME message for a request."""
        message = EmailMessage()
        message["From"] = request.from_address or self.from_address
        message["To"] = ", ".join(request.to)
        if request.cc:
            message["Cc"] = ", ".join(request.cc)
        message["Subject"] = request.subject
        message["Message-ID"] = make_msgid(domain=self._sender_domain(message["From"]))
        message["X-Priority"] = str(request.priority.value)

        if request.html:
            message.set_content("This message requires an HTML capable mail client.")
            message.add_alternative(request.body, subtype="html")
        else:
            message.set_content(request.body)

        for attachment in request.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def _send_message(self, message: EmailMessage, recipients: List[str]) -> None:
        # Bcc recipients travel in the envelope only, never as a header
        smtp_class = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP
        with smtp_class(self.host, self.port, timeout=self.timeout_seconds) as smtp:
            if self.use_tls and not self.use_ssl:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message, to_addrs=recipients)

    @staticmethod
    def _sender_domain(address: Optional[str]) -> Optional[str]:
        if address and "@" in address:
            return address.rsplit("@", 1)[1].strip(">")
        return None

    def __str__(self) -> str:
        return f"SmtpEmailProvider(host={self.host}:{self.port}, priority={self.priority})"
