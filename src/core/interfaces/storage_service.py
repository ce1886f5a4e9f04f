"""Storage service and repository interfaces."""

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar

from src.core.entities import (
    DeviceToken,
    EmailNotification,
    Notification,
    PushNotification,
)

T = TypeVar("T", bound=Notification)


class NotificationRepository(ABC, Generic[T]):
    """Persistence interface for one notification entity type."""

    @abstractmethod
    async def save(self, entity: T) -> T:
        """
        Insert or update a single notification.

        Args:
            entity: Notification to persist

        Returns:
            The persisted notification

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def save_all(self, entities: List[T]) -> List[T]:
        """
        Insert or update several notifications in one write.

        Args:
            entities: Notifications to persist

        Returns:
            The persisted notifications

        Raises:
            StorageError: If the bulk write fails; nothing is committed
        """
        pass

    @abstractmethod
    async def find_by_id(self, notification_id: str) -> Optional[T]:
        """
        Load a notification by id.

        Args:
            notification_id: Notification identifier

        Returns:
            The notification, or None if unknown

        Raises:
            StorageError: If the read fails
        """
        pass


class DeviceTokenRepository(ABC):
    """Persistence interface for device tokens."""

    @abstractmethod
    async def save(self, token: DeviceToken) -> DeviceToken:
        pass

    @abstractmethod
    async def find_by_token(self, device_token: str) -> Optional[DeviceToken]:
        pass

    @abstractmethod
    async def find_by_user(self, user_id: str, active_only: bool = True) -> List[DeviceToken]:
        pass

    @abstractmethod
    async def delete_by_token(self, device_token: str) -> bool:
        """
        Delete a device token.

        Returns:
            True if a token was deleted, False if it did not exist
        """
        pass


class StorageService(ABC):
    """Abstract interface for storage providers."""

    @property
    @abstractmethod
    def email_notifications(self) -> NotificationRepository[EmailNotification]:
        pass

    @property
    @abstractmethod
    def push_notifications(self) -> NotificationRepository[PushNotification]:
        pass

    @property
    @abstractmethod
    def device_tokens(self) -> DeviceTokenRepository:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the storage backend is healthy and accessible.

        Returns:
            True if storage is healthy, False otherwise
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass
