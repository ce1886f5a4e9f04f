"""Notification entities and their status lifecycle."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import InvalidStatusTransitionError
from .provider_type import Channel, Platform


class NotificationStatus(Enum):
    """Lifecycle status of a single delivery attempt."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """Whether the pipeline will never move this status again on its own."""
        return self in (
            NotificationStatus.SENT,
            NotificationStatus.FAILED,
            NotificationStatus.CANCELLED,
            NotificationStatus.EXPIRED,
        )

    def can_transition_to(self, target: "NotificationStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    NotificationStatus.PENDING: frozenset({
        NotificationStatus.PROCESSING,
        NotificationStatus.CANCELLED,
        NotificationStatus.EXPIRED,
    }),
    NotificationStatus.PROCESSING: frozenset({
        NotificationStatus.SENT,
        NotificationStatus.FAILED,
        NotificationStatus.RETRYING,
    }),
    NotificationStatus.RETRYING: frozenset({
        NotificationStatus.PROCESSING,
        NotificationStatus.FAILED,
    }),
    # Administrative re-drive only; the pipeline treats FAILED as terminal.
    NotificationStatus.FAILED: frozenset({NotificationStatus.RETRYING}),
    NotificationStatus.SENT: frozenset(),
    NotificationStatus.CANCELLED: frozenset(),
    NotificationStatus.EXPIRED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Notification:
    """Base delivery record shared by every channel.

    Status only moves forward through the lifecycle enforced by
    :meth:`transition_to`; ``retry_count`` is only incremented by
    :meth:`mark_failed`.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: NotificationStatus = NotificationStatus.PENDING
    provider_type: Optional[Enum] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    user_id: Optional[str] = None
    event_id: Optional[str] = None
    service_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    sent_at: Optional[datetime] = None

    channel = None

    def transition_to(self, target: NotificationStatus) -> None:
        """
        Move the notification to a new status.

        Args:
            target: Desired status

        Raises:
            InvalidStatusTransitionError: If the lifecycle does not allow the move
        """
        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.status, target)
        self.status = target
        self.updated_at = _utcnow()

    def mark_processing(self, provider_type: Optional[Enum] = None) -> None:
        self.transition_to(NotificationStatus.PROCESSING)
        if provider_type is not None:
            self.provider_type = provider_type

    def mark_sent(self, provider_type: Optional[Enum] = None,
                  processing_time_ms: Optional[int] = None) -> None:
        self.transition_to(NotificationStatus.SENT)
        if provider_type is not None:
            self.provider_type = provider_type
        self.processing_time_ms = processing_time_ms
        self.error_message = None
        self.sent_at = self.updated_at

    def mark_failed(self, error: Any) -> None:
        """Record a terminal failure; increments ``retry_count`` by exactly one."""
        self.transition_to(NotificationStatus.FAILED)
        self.error_message = str(error) if error is not None else None
        self.retry_count += 1


@dataclass
class EmailNotification(Notification):
    """Delivery record for an email."""

    to: List[str] = field(default_factory=list)
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    from_address: Optional[str] = None
    subject: str = ""
    body: str = ""
    template_id: Optional[str] = None
    attachment_urls: List[str] = field(default_factory=list)

    channel = Channel.EMAIL


@dataclass
class PushNotification(Notification):
    """Delivery record for a push notification."""

    device_token_id: Optional[str] = None
    device_token: Optional[str] = None
    platform: Optional[Platform] = None
    title: str = ""
    body: str = ""
    data: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    provider_message_id: Optional[str] = None

    channel = Channel.PUSH
