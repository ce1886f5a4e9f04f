"""Event id deduplication backed by the cache provider."""

import logging
from typing import Optional

from src.providers.cache import CacheProvider

logger = logging.getLogger(__name__)

IDEMPOTENCY_KEY_PREFIX = "idempotency:notification:"
PROCESSING = "PROCESSING"
COMPLETED_PREFIX = "COMPLETED:"
FAILED_PREFIX = "FAILED:"


class IdempotencyService:
    """
    Records which event ids have been seen.

    Every operation fails open: when the cache is unreachable a request is
    treated as first processing rather than rejected.
    """

    def __init__(self, cache: CacheProvider, ttl_hours: int = 24, enabled: bool = True):
        """
        Initialize the idempotency service.

        Args:
            cache: Cache backend holding the records
            ttl_hours: How long a record is kept
            enabled: When False every event is treated as first processing
        """
        self.cache = cache
        self.ttl_seconds = ttl_hours * 3600
        self.enabled = enabled

    @staticmethod
    def _key(event_id: str) -> str:
        return f"{IDEMPOTENCY_KEY_PREFIX}{event_id}"

    def is_first_processing(self, event_id: Optional[str]) -> bool:
        """
        Claim an event id.

        Args:
            event_id: Caller-supplied event identifier

        Returns:
            True the first time an id is seen (and for empty ids), False for duplicates
        """
        if not self.enabled:
            return True
        if not event_id:
            logger.warning("Event id is empty, treating as non-duplicate")
            return True

        try:
            if self.cache.put_if_absent(self._key(event_id), PROCESSING, self.ttl_seconds):
                logger.debug(f"First processing for event id: {event_id}")
                return True
            logger.warning(f"Duplicate event id detected: {event_id}. Skipping processing.")
            return False
        except Exception as e:
            logger.error(f"Error checking idempotency for event id {event_id}, allowing processing: {e}")
            return True

    def mark_as_processed(self, event_id: Optional[str], notification_id: str) -> None:
        if not self.enabled or not event_id:
            return
        try:
            self.cache.put(self._key(event_id), f"{COMPLETED_PREFIX}{notification_id}", self.ttl_seconds)
            logger.debug(f"Marked event id {event_id} as processed with notification {notification_id}")
        except Exception as e:
            logger.error(f"Error marking event id {event_id} as processed: {e}")

    def mark_as_failed(self, event_id: Optional[str], reason: str) -> None:
        if not self.enabled or not event_id:
            return
        try:
            self.cache.put(self._key(event_id), f"{FAILED_PREFIX}{reason}", self.ttl_seconds)
            logger.debug(f"Marked event id {event_id} as failed: {reason}")
        except Exception as e:
            logger.error(f"Error marking event id {event_id} as failed: {e}")

    def get_processing_status(self, event_id: Optional[str]) -> Optional[str]:
        """Raw record for an event id: PROCESSING, COMPLETED:<id>, FAILED:<reason> or None."""
        if not event_id:
            return None
        try:
            return self.cache.get(self._key(event_id))
        except Exception as e:
            logger.error(f"Error getting processing status for event id {event_id}: {e}")
            return None

    def remove_record(self, event_id: Optional[str]) -> None:
        if not event_id:
            return
        try:
            self.cache.delete(self._key(event_id))
            logger.debug(f"Removed idempotency record for event id: {event_id}")
        except Exception as e:
            logger.error(f"Error removing idempotency record for event id {event_id}: {e}")
