"""Audit sink interface."""

from abc import ABC, abstractmethod

from src.core.entities import AuditEvent


class AuditSink(ABC):
    """Abstract interface for audit event destinations."""

    @abstractmethod
    async def publish(self, event: AuditEvent) -> bool:
        """
        Publish an audit event.

        Args:
            event: The audit event to publish

        Returns:
            True if the event was accepted, False otherwise

        Raises:
            AuditError: If publishing fails unexpectedly
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the audit destination is reachable.

        Returns:
            True if healthy, False otherwise
        """
        pass
