"""Audit event entity."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class AuditEventType(Enum):
    """Kinds of operational events published for auditing."""

    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_PROCESSED = "notification_processed"
    EMAIL_SENT = "email_sent"
    EMAIL_FAILED = "email_failed"
    EMAIL_RETRY = "email_retry"
    PUSH_SENT = "push_sent"
    PUSH_FAILED = "push_failed"
    DEVICE_TOKEN_DEACTIVATED = "device_token_deactivated"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CIRCUIT_BREAKER_OPENED = "circuit_breaker_opened"
    PROVIDER_FAILED = "provider_failed"


@dataclass(frozen=True)
class AuditEvent:
    """An immutable record of something that happened during delivery."""

    event_type: AuditEventType
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    action: Optional[str] = None
    status: str = "SUCCESS"
    service_name: str = "herald"
    user_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def failure(cls, event_type: AuditEventType, error: Any, **kwargs) -> "AuditEvent":
        """Create a failure event carrying the error message."""
        return cls(event_type=event_type, status="FAILURE", error_message=str(error), **kwargs)

    def to_payload(self) -> Dict[str, Any]:
        """Convert the event to a JSON-ready dictionary."""
        payload = {
            "event_type": self.event_type.value,
            "service_name": self.service_name,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }
        if self.user_id:
            payload["user_id"] = self.user_id
        if self.error_message:
            payload["error_message"] = self.error_message
        return payload
