"""Use cases module."""

from .audit_publisher import AuditEventPublisher
from .device_tokens import DeviceTokenService
from .dispatch import DeliveryReceipt, NotificationDispatcher
from .health_management import HealthManagementUseCase
from .idempotency import IdempotencyService
from .validation import (
    EmailValidationLimits,
    EmailValidationService,
    PushValidationLimits,
    PushValidationService,
)

__all__ = [
    "AuditEventPublisher",
    "DeliveryReceipt",
    "DeviceTokenService",
    "EmailValidationLimits",
    "EmailValidationService",
    "HealthManagementUseCase",
    "IdempotencyService",
    "NotificationDispatcher",
    "PushValidationLimits",
    "PushValidationService",
]
