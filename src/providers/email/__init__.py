"""Email delivery providers."""

from .sendgrid_provider import SendGridEmailProvider
from .smtp_provider import SMTP_BREAKER_NAME, SmtpEmailProvider

__all__ = ["SMTP_BREAKER_NAME", "SendGridEmailProvider", "SmtpEmailProvider"]
