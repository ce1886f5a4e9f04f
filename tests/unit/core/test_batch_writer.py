"""Tests for the batch writer."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.core.batching import BatchWriter
from src.core.entities import EmailNotification
from src.providers.exceptions import StorageError
from src.providers.storage.memory_storage import MemoryNotificationRepository


def _notifications(count):
    return [EmailNotification(to=[f"user{n}@example.com"], subject="s", body="b") for n in range(count)]


@pytest.fixture
def repository():
    repo = MemoryNotificationRepository("email")
    repo.save_all = AsyncMock(wraps=repo.save_all)
    return repo


class TestBatchWriter:
    """Test batched write-behind persistence."""

    def test_rejects_invalid_sizes(self, repository):
        with pytest.raises(ValueError):
            BatchWriter("email", repository, batch_size=0)
        with pytest.raises(ValueError):
            BatchWriter("email", repository, queue_capacity=0)

    @pytest.mark.asyncio
    async def test_flushes_when_batch_is_full(self, repository):
        writer = BatchWriter("email", repository, batch_size=3, flush_interval=60, poll_interval=0.01)
        await writer.start()

        for notification in _notifications(3):
            assert await writer.enqueue(notification)

        for _ in range(100):
            if len(repository) == 3:
                break
            await asyncio.sleep(0.01)

        assert len(repository) == 3
        repository.save_all.assert_awaited_once()
        await writer.shutdown()

    @pytest.mark.asyncio
    async def test_flushes_partial_batch_after_interval(self, repository):
        writer = BatchWriter("email", repository, batch_size=50, flush_interval=0.05, poll_interval=0.01)
        await writer.start()

        await writer.enqueue(_notifications(1)[0])
        await asyncio.sleep(0.3)

        assert len(repository) == 1
        assert writer.stats()["flush_count"] == 1
        await writer.shutdown()

    @pytest.mark.asyncio
    async def test_full_queue_writes_synchronously(self, repository):
        writer = BatchWriter("email", repository, queue_capacity=1, offer_timeout=0.01)
        first, second = _notifications(2)

        assert await writer.enqueue(first) is True
        assert await writer.enqueue(second) is False

        assert await repository.find_by_id(second.id) is not None
        assert await repository.find_by_id(first.id) is None
        assert writer.stats()["sync_writes"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_drains_everything(self, repository):
        writer = BatchWriter("email", repository, batch_size=2, queue_capacity=10)
        notifications = _notifications(5)
        for notification in notifications:
            await writer.enqueue(notification)

        await writer.shutdown()

        assert len(repository) == 5
        assert writer.stats()["items_written"] == 5
        assert writer.stats()["flush_count"] == 3

    @pytest.mark.asyncio
    async def test_shutdown_persists_item_from_blocked_producer(self, repository):
        writer = BatchWriter("email", repository, queue_capacity=1, offer_timeout=5)
        first, second = _notifications(2)
        assert await writer.enqueue(first)

        blocked = asyncio.create_task(writer.enqueue(second))
        await asyncio.sleep(0.01)
        assert not blocked.done()

        await writer.shutdown()

        assert await blocked is True
        assert await repository.find_by_id(first.id) is not None
        assert await repository.find_by_id(second.id) is not None
        assert writer.queue_size == 0
        assert writer.stats()["items_written"] == 2

    @pytest.mark.asyncio
    async def test_enqueue_after_shutdown_writes_synchronously(self, repository):
        writer = BatchWriter("email", repository)
        await writer.start()
        await writer.shutdown()

        notification = _notifications(1)[0]
        assert await writer.enqueue(notification) is False
        assert await repository.find_by_id(notification.id) is not None

    @pytest.mark.asyncio
    async def test_failed_bulk_write_falls_back_to_individual_saves(self, repository):
        repository.save_all = AsyncMock(side_effect=StorageError("database is locked"))
        writer = BatchWriter("email", repository, batch_size=10)
        for notification in _notifications(3):
            await writer.enqueue(notification)

        await writer.shutdown()

        assert len(repository) == 3
        assert writer.stats()["items_written"] == 3
        assert writer.stats()["failed_writes"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, repository):
        writer = BatchWriter("push", repository, queue_capacity=5)
        await writer.start()
        stats = writer.stats()

        assert stats["name"] == "push"
        assert stats["running"] is True
        assert stats["queue_capacity"] == 5
        await writer.shutdown()
        assert writer.stats()["running"] is False
