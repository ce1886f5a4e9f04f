"""Core entities module."""

from .audit_event import AuditEvent, AuditEventType
from .device_token import DeviceToken
from .notification import (
    EmailNotification,
    Notification,
    NotificationStatus,
    PushNotification,
)
from .provider_type import (
    Channel,
    EmailProviderType,
    Platform,
    PushProviderType,
    parse_provider_type,
)
from .requests import EmailAttachment, EmailPriority, EmailRequest, PushRequest

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "Channel",
    "DeviceToken",
    "EmailAttachment",
    "EmailNotification",
    "EmailPriority",
    "EmailProviderType",
    "EmailRequest",
    "Notification",
    "NotificationStatus",
    "Platform",
    "PushNotification",
    "PushProviderType",
    "PushRequest",
    "parse_provider_type",
]
