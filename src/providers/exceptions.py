"""Provider exceptions."""


class ProviderError(Exception):
    """Base exception for provider errors."""
    pass


class EmailProviderError(ProviderError):
    """Exception raised by email delivery providers."""
    pass


class PushProviderError(ProviderError):
    """Exception raised by push delivery providers."""
    pass


class InvalidDeviceTokenError(PushProviderError):
    """The push service rejected the device token as unknown or expired for good."""
    pass


class StorageError(ProviderError):
    """Exception raised by storage providers."""
    pass


class CacheError(ProviderError):
    """Exception raised by cache providers when the backend fails."""
    pass


class AuditError(ProviderError):
    """Exception raised by audit sinks."""
    pass
