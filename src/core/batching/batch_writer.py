"""Batched persistence of delivery results."""

import asyncio
import logging
import time
from typing import Any, Dict, Generic, List, Optional, TypeVar

from src.core.entities import Notification
from src.core.interfaces import NotificationRepository

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Notification)


class BatchWriter(Generic[T]):
    """
    Bounded write-behind buffer for one notification entity type.

    Producers call :meth:`enqueue`; a single background task accumulates
    entities and writes them with one ``save_all`` when either ``batch_size``
    entities are buffered or the oldest buffered entity has waited
    ``flush_interval`` seconds. A failed bulk write falls back to saving each
    entity individually. When the queue is full, ``enqueue`` writes the entity
    synchronously instead of dropping it.
    """

    def __init__(
        self,
        name: str,
        repository: NotificationRepository[T],
        batch_size: int = 50,
        queue_capacity: int = 1000,
        flush_interval: float = 1.0,
        offer_timeout: float = 0.1,
        poll_interval: float = 0.1,
        status_log_interval: float = 30.0,
    ):
        """
        Initialize the batch writer.

        Args:
            name: Label used in logs and stats (e.g. "email")
            repository: Repository receiving the writes
            batch_size: Entities per bulk write
            queue_capacity: Maximum buffered entities
            flush_interval: Seconds a buffered entity may wait before a flush
            offer_timeout: Seconds ``enqueue`` waits for queue space
            poll_interval: Seconds the worker waits on an empty queue
            status_log_interval: Seconds between queue size debug logs
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be at least 1")

        self.name = name
        self.repository = repository
        self.batch_size = batch_size
        self.queue_capacity = queue_capacity
        self.flush_interval = flush_interval
        self.offer_timeout = offer_timeout
        self.poll_interval = poll_interval
        self.status_log_interval = status_log_interval

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_capacity)
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._stopped = False
        self._pending_puts = 0

        self._flush_count = 0
        self._items_written = 0
        self._sync_writes = 0
        self._failed_writes = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the background flush task."""
        if self._task is not None:
            return
        self._running = True
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=f"batch-writer-{self.name}")
        logger.info(f"Batch writer '{self.name}' started")

    async def enqueue(self, entity: T) -> bool:
        """
        Hand an entity to the buffer.

        Args:
            entity: Notification to persist

        Returns:
            True if buffered, False if it was written synchronously instead

        Raises:
            StorageError: If the synchronous fallback write fails
        """
        if not self._stopped:
            self._pending_puts += 1
            try:
                await asyncio.wait_for(self._queue.put(entity), timeout=self.offer_timeout)
                return True
            except asyncio.TimeoutError:
                logger.warning(f"Batch write queue '{self.name}' is full. Writing synchronously.")
            finally:
                self._pending_puts -= 1
        else:
            logger.warning(f"Batch writer '{self.name}' is stopped. Writing synchronously.")

        await self.repository.save(entity)
        self._sync_writes += 1
        return False

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker and persist everything still buffered.

        Args:
            timeout: Seconds to wait for the worker's final flush before cancelling it
        """
        if self._stopped:
            return
        self._stopped = True
        self._running = False

        if self._task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Batch writer '{self.name}' did not stop in time, cancelling")
                self._task.cancel()
            self._task = None

        # Draining a full queue wakes producers blocked in put(), whose items
        # land after the drain. Keep going until none are left in flight.
        while True:
            remaining = self._drain()
            if remaining:
                logger.info(f"Flushing {len(remaining)} remaining {self.name} notifications on shutdown")
                for start in range(0, len(remaining), self.batch_size):
                    await self._flush(remaining[start:start + self.batch_size])
            elif self._pending_puts:
                await asyncio.sleep(0)
            else:
                break

        logger.info(f"Batch writer '{self.name}' stopped")

    def _drain(self) -> List[T]:
        drained: List[T] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return drained

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "running": self.is_running,
            "queue_size": self.queue_size,
            "queue_capacity": self.queue_capacity,
            "flush_count": self._flush_count,
            "items_written": self._items_written,
            "sync_writes": self._sync_writes,
            "failed_writes": self._failed_writes,
        }

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        batch: List[T] = []
        batch_started = 0.0
        last_status_log = time.monotonic()

        while self._running:
            try:
                timeout = self.poll_interval
                if batch:
                    remaining = batch_started + self.flush_interval - loop.time()
                    timeout = max(0.0, min(timeout, remaining))

                entity = await self._poll(timeout)
                if entity is not None:
                    if not batch:
                        batch_started = loop.time()
                    batch.append(entity)

                if len(batch) >= self.batch_size or (
                    batch and loop.time() - batch_started >= self.flush_interval
                ):
                    await self._flush(batch)
                    batch = []

                if time.monotonic() - last_status_log >= self.status_log_interval:
                    logger.debug(
                        f"Batch writer '{self.name}' queue size: {self.queue_size}/{self.queue_capacity}"
                    )
                    last_status_log = time.monotonic()

            except Exception as e:
                logger.error(f"Error in batch writer '{self.name}': {e}")

        if batch:
            await self._flush(batch)

    async def _poll(self, timeout: float) -> Optional[T]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def _flush(self, batch: List[T]) -> None:
        start = time.monotonic()
        try:
            await self.repository.save_all(list(batch))
            self._flush_count += 1
            self._items_written += len(batch)
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(f"Flushed {len(batch)} {self.name} notifications in {duration_ms}ms")
        except Exception as e:
            logger.error(f"Error flushing batch of {len(batch)} {self.name} notifications: {e}")
            for entity in batch:
                try:
                    await self.repository.save(entity)
                    self._items_written += 1
                except Exception as ex:
                    self._failed_writes += 1
                    logger.error(f"Error saving individual notification {entity.id}: {ex}")
