"""Delivery pipeline: provider selection, execution and state tracking."""

from .email_delivery import EmailDeliveryService
from .executor import DeliveryExecutor
from .pipeline import DeliveryPipeline
from .provider_selector import (
    PLATFORM_PREFERENCES,
    EmailProviderSelector,
    ProviderSelector,
    PushProviderSelector,
)
from .push_delivery import PushDeliveryService, is_invalid_token_error, is_push_retryable

__all__ = [
    "DeliveryExecutor",
    "DeliveryPipeline",
    "EmailDeliveryService",
    "EmailProviderSelector",
    "PLATFORM_PREFERENCES",
    "ProviderSelector",
    "PushDeliveryService",
    "PushProviderSelector",
    "is_invalid_token_error",
    "is_push_retryable",
]
