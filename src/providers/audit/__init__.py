"""Audit sink providers."""

from .logging_sink import LoggingAuditSink
from .webhook_sink import WebhookAuditSink

__all__ = ["LoggingAuditSink", "WebhookAuditSink"]
