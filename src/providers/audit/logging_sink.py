"""Audit sink writing events to a dedicated logger."""

import json
import logging

from ...core.entities import AuditEvent
from ...core.interfaces import AuditSink

logger = logging.getLogger(__name__)


class LoggingAuditSink(AuditSink):
    """Writes each audit event as one JSON log line."""

    def __init__(self, logger_name: str = "herald.audit"):
        self.audit_logger = logging.getLogger(logger_name)

    async def publish(self, event: AuditEvent) -> bool:
        level = logging.INFO if event.status == "SUCCESS" else logging.WARNING
        self.audit_logger.log(level, json.dumps(event.to_payload(), default=str))
        return True

    async def health_check(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"LoggingAuditSink(logger={self.audit_logger.name})"
