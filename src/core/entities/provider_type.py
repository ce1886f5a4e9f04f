"""Channel, provider and platform enumerations."""

from enum import Enum


class Channel(Enum):
    """Notification delivery channel."""

    EMAIL = "email"
    PUSH = "push"


class EmailProviderType(Enum):
    """Concrete email delivery mechanisms."""

    SMTP = "smtp"
    SENDGRID = "sendgrid"


class PushProviderType(Enum):
    """Concrete push delivery mechanisms."""

    FCM = "fcm"
    APNS = "apns"
    WEB_PUSH = "web_push"


class Platform(Enum):
    """Device platform a push token belongs to."""

    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


def parse_provider_type(value: str):
    """Resolve a stored provider identifier to its enum member.

    Args:
        value: Provider value as persisted (e.g. ``"smtp"``, ``"fcm"``)

    Returns:
        EmailProviderType or PushProviderType member, or None for empty values

    Raises:
        ValueError: If the value is not a known provider
    """
    if not value:
        return None
    for enum_cls in (EmailProviderType, PushProviderType):
        try:
            return enum_cls(value)
        except ValueError:
            continue
    raise ValueError(f"Unknown provider type: {value}")
