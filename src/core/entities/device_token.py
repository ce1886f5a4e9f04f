"""Device token entity."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .provider_type import Platform


@dataclass
class DeviceToken:
    """A registered push destination for a user's device."""

    user_id: str
    device_token: str
    platform: Platform
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    app_version: Optional[str] = None
    language: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.user_id or not self.user_id.strip():
            raise ValueError("Device token user id cannot be empty")
        if not self.device_token or not self.device_token.strip():
            raise ValueError("Device token value cannot be empty")

    def deactivate(self) -> None:
        self.active = False
        self.updated_at = datetime.now(timezone.utc)
