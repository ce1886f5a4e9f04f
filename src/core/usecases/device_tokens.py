"""Device token registration and lifecycle."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from src.core.entities import DeviceToken, Platform
from src.core.exceptions import DeviceTokenNotFoundError
from src.core.interfaces import DeviceTokenRepository

logger = logging.getLogger(__name__)


class DeviceTokenService:
    """Use case for managing users' push device tokens."""

    def __init__(self, repository: DeviceTokenRepository):
        self.repository = repository

    async def register_token(
        self,
        user_id: str,
        device_token: str,
        platform: Platform,
        device_model: Optional[str] = None,
        os_version: Optional[str] = None,
        app_version: Optional[str] = None,
        language: Optional[str] = None,
    ) -> DeviceToken:
        """
        Register a device token, updating and reactivating it if already known.

        Args:
            user_id: Owner of the device
            device_token: Provider token value
            platform: Device platform

        Returns:
            The stored token
        """
        logger.info(f"Registering device token for user: {user_id}, platform: {platform.name}")

        token = await self.repository.find_by_token(device_token)
        if token is not None:
            logger.info(f"Updating existing device token: {token.id}")
            token.user_id = user_id
            token.platform = platform
            token.device_model = device_model
            token.os_version = os_version
            token.app_version = app_version
            token.language = language
            token.active = True
            token.updated_at = datetime.now(timezone.utc)
        else:
            token = DeviceToken(
                user_id=user_id,
                device_token=device_token,
                platform=platform,
                device_model=device_model,
                os_version=os_version,
                app_version=app_version,
                language=language,
            )

        await self.repository.save(token)
        logger.info(f"Device token registered successfully: {token.id}")
        return token

    async def get_user_tokens(self, user_id: str) -> List[DeviceToken]:
        logger.debug(f"Fetching device tokens for user: {user_id}")
        return await self.repository.find_by_user(user_id, active_only=True)

    async def get_active_token_by_value(self, token_value: str) -> DeviceToken:
        """
        Look up an active token.

        Raises:
            DeviceTokenNotFoundError: If the token is unknown or inactive
        """
        token = await self.repository.find_by_token(token_value)
        if token is None or not token.active:
            raise DeviceTokenNotFoundError(f"Active device token not found: {token_value}")
        return token

    async def deactivate_token(self, token_value: str) -> DeviceToken:
        """
        Mark a token inactive.

        Raises:
            DeviceTokenNotFoundError: If the token is unknown
        """
        logger.info(f"Deactivating device token: {token_value}")

        token = await self.repository.find_by_token(token_value)
        if token is None:
            raise DeviceTokenNotFoundError(f"Device token not found: {token_value}")

        token.deactivate()
        await self.repository.save(token)
        logger.info(f"Device token deactivated: {token.id}")
        return token

    async def delete_token(self, token_value: str) -> bool:
        logger.info(f"Deleting device token: {token_value}")
        return await self.repository.delete_by_token(token_value)
