"""Provider selection per channel."""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Sequence

from src.core.entities import Channel, EmailProviderType, Platform, PushProviderType
from src.core.exceptions import ProviderNotAvailableError
from src.core.interfaces import DeliveryProvider, EmailProvider, PushProvider

logger = logging.getLogger(__name__)

# Platform-native provider first, then the generic provider.
PLATFORM_PREFERENCES: Mapping[Platform, Sequence[PushProviderType]] = MappingProxyType({
    Platform.IOS: (PushProviderType.APNS, PushProviderType.FCM),
    Platform.ANDROID: (PushProviderType.FCM,),
    Platform.WEB: (PushProviderType.WEB_PUSH, PushProviderType.FCM),
})


class ProviderSelector:
    """
    Immutable registry of the providers of one channel.

    Args:
        channel: Channel every registered provider must belong to
        providers: Provider instances, at most one per provider type
        active_provider: Provider type configured as active
        fallback_to_priority: When the active provider is unavailable,
            fall back to the highest-priority available provider instead of failing

    Raises:
        ValueError: If two providers share a type or a provider belongs to another channel
    """

    def __init__(
        self,
        channel: Channel,
        providers: Iterable[DeliveryProvider],
        active_provider: Enum,
        fallback_to_priority: bool = False,
    ):
        registry: Dict[Enum, DeliveryProvider] = {}
        for provider in providers:
            if provider.channel != channel:
                raise ValueError(
                    f"{provider.get_provider_name()} is a {provider.channel.value} provider, "
                    f"not {channel.value}"
                )
            if provider.provider_type in registry:
                raise ValueError(f"Duplicate provider registered: {provider.provider_type.name}")
            registry[provider.provider_type] = provider

        self.channel = channel
        self.active_provider = active_provider
        self.fallback_to_priority = fallback_to_priority
        self._providers: Mapping[Enum, DeliveryProvider] = MappingProxyType(registry)

        logger.info(
            f"Initialized {channel.value} provider selector with providers: "
            f"{[t.name for t in self._providers]} (active: {active_provider.name})"
        )

    @property
    def providers(self) -> Mapping[Enum, DeliveryProvider]:
        return self._providers

    def select_provider(self) -> DeliveryProvider:
        """
        Select the configured active provider.

        Returns:
            The active provider

        Raises:
            ProviderNotAvailableError: If the active provider is missing or unavailable
                and no fallback is allowed or possible
        """
        provider = self._providers.get(self.active_provider)
        if provider is not None and provider.is_available():
            logger.debug(f"Selected active {self.channel.value} provider: {self.active_provider.name}")
            return provider

        if self.fallback_to_priority:
            logger.warning(
                f"Active provider {self.active_provider.name} not available, attempting fallback"
            )
            fallback = self._highest_priority_available()
            if fallback is not None:
                logger.warning(f"Using fallback provider: {fallback.provider_type.name}")
                return fallback

        raise ProviderNotAvailableError(f"No {self.channel.value} provider is currently available")

    def get_provider(self, provider_type: Enum) -> DeliveryProvider:
        """
        Look up a registered provider.

        Raises:
            ProviderNotAvailableError: If the type was never registered
        """
        provider = self._providers.get(provider_type)
        if provider is None:
            raise ProviderNotAvailableError(f"Provider not found: {provider_type.name}")
        return provider

    def is_provider_available(self, provider_type: Enum) -> bool:
        """
        Check a registered provider's availability.

        Raises:
            ProviderNotAvailableError: If the type was never registered
        """
        return self.get_provider(provider_type).is_available()

    def get_all_provider_statuses(self) -> Dict[Enum, bool]:
        """Snapshot of every registered provider's current availability."""
        return {
            provider_type: provider.is_available()
            for provider_type, provider in self._providers.items()
        }

    def _highest_priority_available(self) -> Optional[DeliveryProvider]:
        candidates = sorted(
            (p for p in self._providers.values() if p.is_available()),
            key=lambda p: p.priority,
            reverse=True,
        )
        return candidates[0] if candidates else None


class EmailProviderSelector(ProviderSelector):
    """Selector over email providers."""

    def __init__(
        self,
        providers: Iterable[EmailProvider],
        active_provider: EmailProviderType = EmailProviderType.SMTP,
        fallback_to_priority: bool = False,
    ):
        super().__init__(Channel.EMAIL, providers, active_provider, fallback_to_priority)


class PushProviderSelector(ProviderSelector):
    """Selector over push providers with platform-aware selection."""

    def __init__(
        self,
        providers: Iterable[PushProvider],
        active_provider: PushProviderType = PushProviderType.FCM,
        fallback_to_priority: bool = True,
        platform_preferences: Optional[Mapping[Platform, Sequence[PushProviderType]]] = None,
    ):
        super().__init__(Channel.PUSH, providers, active_provider, fallback_to_priority)
        self.platform_preferences = MappingProxyType(dict(platform_preferences or PLATFORM_PREFERENCES))

    def select_provider_by_platform(self, platform: Optional[Platform]) -> DeliveryProvider:
        """
        Select a provider for a device platform.

        Walks the platform's preference list, then falls back to the
        highest-priority available provider across the registry.

        Args:
            platform: Device platform; None skips the preference list

        Returns:
            The selected provider

        Raises:
            ProviderNotAvailableError: If no provider is available
        """
        logger.debug(f"Selecting push provider for platform: {platform.name if platform else None}")

        for provider_type in self.platform_preferences.get(platform, ()):
            provider = self._providers.get(provider_type)
            if provider is not None and provider.is_available():
                logger.debug(f"Selected {provider_type.name} for {platform.name} device")
                return provider

        fallback = self._highest_priority_available()
        if fallback is not None:
            logger.warning(
                f"No platform-specific provider available for "
                f"{platform.name if platform else 'unknown platform'}, "
                f"using {fallback.provider_type.name} (priority {fallback.priority})"
            )
            return fallback

        raise ProviderNotAvailableError(
            f"No push provider is currently available for platform "
            f"{platform.name if platform else 'unknown'}"
        )
