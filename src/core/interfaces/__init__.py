"""Core interfaces module."""

from .audit_sink import AuditSink
from .delivery_provider import DeliveryProvider, EmailProvider, PushProvider
from .storage_service import (
    DeviceTokenRepository,
    NotificationRepository,
    StorageService,
)

__all__ = [
    "AuditSink",
    "DeliveryProvider",
    "DeviceTokenRepository",
    "EmailProvider",
    "NotificationRepository",
    "PushProvider",
    "StorageService",
]
