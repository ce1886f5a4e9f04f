"""Core domain exceptions."""

from typing import Optional


class HeraldError(Exception):
    """Base exception for the notification delivery core."""
    pass


class ProviderNotAvailableError(HeraldError):
    """No usable provider exists for the requested channel or platform."""
    pass


class CallNotPermittedError(HeraldError):
    """Raised when a circuit breaker rejects a call without invoking it."""

    def __init__(self, breaker_name: str, state: str):
        self.breaker_name = breaker_name
        self.state = state
        super().__init__(
            f"Circuit breaker '{breaker_name}' is {state.upper()} and does not permit further calls"
        )


class NotificationSendException(HeraldError):
    """A delivery attempt failed after retries were exhausted."""

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 notification_id: Optional[str] = None):
        super().__init__(message)
        self.cause = cause
        self.notification_id = notification_id


class PushNotificationException(NotificationSendException):
    """A push delivery attempt failed after retries were exhausted."""
    pass


class ValidationError(HeraldError, ValueError):
    """Request failed validation before reaching the delivery pipeline."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class DuplicateNotificationError(HeraldError):
    """The request's event id has already been processed."""

    def __init__(self, event_id: str, status: Optional[str] = None):
        self.event_id = event_id
        self.status = status
        super().__init__(f"Duplicate notification request for event id {event_id}")


class NotificationNotFoundError(HeraldError):
    """Raised when a notification id does not resolve to a stored entity."""
    pass


class DeviceTokenNotFoundError(HeraldError):
    """Raised when a device token is unknown or inactive."""
    pass


class InvalidStatusTransitionError(HeraldError, ValueError):
    """Raised when a notification status change would move backwards."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition notification from {current.name} to {target.name}")
