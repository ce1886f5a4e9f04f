"""Fire-and-forget publishing of audit events."""

import asyncio
import logging
from typing import List, Optional, Sequence, Set

from src.core.entities import AuditEvent
from src.core.interfaces import AuditSink

logger = logging.getLogger(__name__)


class AuditEventPublisher:
    """
    Fans audit events out to every configured sink.

    :meth:`publish` never raises and never waits: each sink call runs in a
    detached task whose failures are only logged. Events published outside
    a running event loop are dropped with a warning.
    """

    def __init__(self, sinks: Sequence[AuditSink], enabled: bool = True):
        """
        Initialize the publisher.

        Args:
            sinks: Audit destinations
            enabled: When False every event is discarded
        """
        self.sinks: List[AuditSink] = list(sinks)
        self.enabled = enabled
        self._tasks: Set[asyncio.Task] = set()
        self._published = 0
        self._failed = 0

    def publish(self, event: AuditEvent) -> None:
        if not self.enabled or not self.sinks:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping audit event {event.event_type.value}")
            return

        for sink in self.sinks:
            task = loop.create_task(self._deliver(sink, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, sink: AuditSink, event: AuditEvent) -> None:
        try:
            accepted = await sink.publish(event)
            if accepted:
                self._published += 1
            else:
                self._failed += 1
                logger.warning(
                    f"{sink.__class__.__name__} rejected audit event {event.event_type.value}"
                )
        except Exception as e:
            self._failed += 1
            logger.error(
                f"Failed to publish audit event {event.event_type.value} "
                f"to {sink.__class__.__name__}: {e}"
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight sink calls, cancelling what is left after timeout."""
        tasks = list(self._tasks)
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} pending audit event(s)")
            await asyncio.gather(*pending, return_exceptions=True)

    async def health_check(self) -> bool:
        if not self.enabled:
            return True
        results = await asyncio.gather(
            *(sink.health_check() for sink in self.sinks), return_exceptions=True
        )
        return all(result is True for result in results)

    def stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "sinks": [sink.__class__.__name__ for sink in self.sinks],
            "pending": len(self._tasks),
            "published": self._published,
            "failed": self._failed,
        }
