"""Inbound delivery request value objects."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .provider_type import Platform


class EmailPriority(Enum):
    """Email priority, mapped to the X-Priority header value."""

    HIGH = 1
    NORMAL = 3
    LOW = 5


@dataclass(frozen=True)
class EmailAttachment:
    """An in-memory file attached to an email."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class EmailRequest:
    """Request to deliver an email."""

    to: List[str]
    subject: str
    body: str
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    html: bool = False
    from_address: Optional[str] = None
    priority: EmailPriority = EmailPriority.NORMAL
    attachments: List[EmailAttachment] = field(default_factory=list)
    template_id: Optional[str] = None
    user_id: Optional[str] = None
    event_id: Optional[str] = None
    service_id: Optional[str] = None

    @property
    def all_recipients(self) -> List[str]:
        return [*self.to, *self.cc, *self.bcc]


@dataclass(frozen=True)
class PushRequest:
    """Request to deliver a push notification to one device token."""

    device_token: Optional[str]
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    sound: Optional[str] = None
    badge: Optional[int] = None
    click_action: Optional[str] = None
    priority: int = 5
    ttl_seconds: Optional[int] = None
    platform: Optional[Platform] = None
    user_id: Optional[str] = None
    event_id: Optional[str] = None
    service_id: Optional[str] = None

    @property
    def is_high_priority(self) -> bool:
        return self.priority > 5
