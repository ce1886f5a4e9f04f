"""Delivery provider interfaces, one per channel."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Optional

from src.core.entities import Channel, EmailRequest, PushRequest

if TYPE_CHECKING:
    from src.core.resilience import CircuitBreaker


class DeliveryProvider(ABC):
    """
    A concrete delivery mechanism for a single channel.

    Providers are registered once at startup; only their internal health
    (configuration and circuit breaker state) changes afterwards.
    """

    channel: Channel

    def __init__(
        self,
        priority: int = 0,
        enabled: bool = True,
        circuit_breaker: Optional["CircuitBreaker"] = None,
    ):
        """
        Initialize the provider.

        Args:
            priority: Selection priority, higher is preferred
            enabled: Whether the provider was enabled in configuration
            circuit_breaker: Optional breaker guarding ``send``
        """
        self._priority = priority
        self.enabled = enabled
        self._circuit_breaker = circuit_breaker

    @property
    @abstractmethod
    def provider_type(self) -> Enum:
        """Identity of this provider within its channel."""
        pass

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def circuit_breaker(self) -> Optional["CircuitBreaker"]:
        return self._circuit_breaker

    @abstractmethod
    async def send(self, request) -> Optional[str]:
        """
        Deliver a single request.

        Args:
            request: Channel-specific request

        Returns:
            Provider message id when the provider reports one

        Raises:
            ProviderError: If the provider rejected or failed the delivery
        """
        pass

    def is_configured(self) -> bool:
        """Whether the provider has everything it needs to send."""
        return True

    def is_available(self) -> bool:
        """
        Check whether the provider can currently accept sends.

        Returns:
            False when disabled, unconfigured or while its breaker is open
        """
        if not self.enabled or not self.is_configured():
            return False
        if self._circuit_breaker is not None and self._circuit_breaker.is_open():
            return False
        return True

    async def health_check(self) -> bool:
        return self.is_available()

    def get_provider_name(self) -> str:
        return self.provider_type.value

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(priority={self._priority}, enabled={self.enabled})"


class EmailProvider(DeliveryProvider):
    """Email delivery capability."""

    channel = Channel.EMAIL

    @abstractmethod
    async def send(self, request: EmailRequest) -> Optional[str]:
        pass


class PushProvider(DeliveryProvider):
    """Push delivery capability."""

    channel = Channel.PUSH

    @abstractmethod
    async def send(self, request: PushRequest) -> Optional[str]:
        pass
