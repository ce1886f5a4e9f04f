"""In-memory storage provider for testing and development."""

import asyncio
import copy
import logging
from typing import Any, Dict, Generic, List, Optional, TypeVar

from src.core.entities import DeviceToken, EmailNotification, PushNotification
from src.core.interfaces import DeviceTokenRepository, NotificationRepository, StorageService
from src.providers.exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MemoryNotificationRepository(NotificationRepository[T], Generic[T]):
    """Dictionary-backed notification repository.

    Entities are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self, name: str):
        self.name = name
        self._items: Dict[str, T] = {}
        self._lock = asyncio.Lock()

    async def save(self, entity: T) -> T:
        async with self._lock:
            self._items[entity.id] = copy.deepcopy(entity)
        return entity

    async def save_all(self, entities: List[T]) -> List[T]:
        async with self._lock:
            try:
                staged = {entity.id: copy.deepcopy(entity) for entity in entities}
            except Exception as e:
                raise StorageError(f"Failed to save {self.name} batch: {e}") from e
            self._items.update(staged)
        logger.debug(f"Stored {len(entities)} {self.name} notifications in memory")
        return entities

    async def find_by_id(self, notification_id: str) -> Optional[T]:
        item = self._items.get(notification_id)
        return copy.deepcopy(item) if item is not None else None

    def __len__(self) -> int:
        return len(self._items)


class MemoryDeviceTokenRepository(DeviceTokenRepository):
    """Dictionary-backed device token repository keyed by token value."""

    def __init__(self):
        self._tokens: Dict[str, DeviceToken] = {}
        self._lock = asyncio.Lock()

    async def save(self, token: DeviceToken) -> DeviceToken:
        async with self._lock:
            self._tokens[token.device_token] = copy.deepcopy(token)
        return token

    async def find_by_token(self, device_token: str) -> Optional[DeviceToken]:
        token = self._tokens.get(device_token)
        return copy.deepcopy(token) if token is not None else None

    async def find_by_user(self, user_id: str, active_only: bool = True) -> List[DeviceToken]:
        tokens = [
            copy.deepcopy(t)
            for t in self._tokens.values()
            if t.user_id == user_id and (t.active or not active_only)
        ]
        tokens.sort(key=lambda t: t.created_at)
        return tokens

    async def delete_by_token(self, device_token: str) -> bool:
        async with self._lock:
            return self._tokens.pop(device_token, None) is not None

    def __len__(self) -> int:
        return len(self._tokens)


class MemoryStorage(StorageService):
    """In-memory storage provider for testing and development."""

    def __init__(self):
        self._email_notifications: MemoryNotificationRepository[EmailNotification] = (
            MemoryNotificationRepository("email")
        )
        self._push_notifications: MemoryNotificationRepository[PushNotification] = (
            MemoryNotificationRepository("push")
        )
        self._device_tokens = MemoryDeviceTokenRepository()
        logger.debug("Memory storage initialized")

    @property
    def email_notifications(self) -> MemoryNotificationRepository[EmailNotification]:
        return self._email_notifications

    @property
    def push_notifications(self) -> MemoryNotificationRepository[PushNotification]:
        return self._push_notifications

    @property
    def device_tokens(self) -> MemoryDeviceTokenRepository:
        return self._device_tokens

    async def health_check(self) -> bool:
        """
        Check if the memory storage is healthy and accessible.

        Returns:
            True if service is healthy, False otherwise
        """
        logger.debug("Memory storage health check passed")
        return True

    def get_stats(self) -> Dict[str, Any]:
        """
        Get storage statistics.

        Returns:
            Dictionary with storage statistics
        """
        return {
            "type": "memory",
            "email_notifications_count": len(self._email_notifications),
            "push_notifications_count": len(self._push_notifications),
            "device_tokens_count": len(self._device_tokens),
        }
