"""Tests for event id deduplication."""

from unittest.mock import MagicMock

import pytest

from src.core.usecases import IdempotencyService
from src.providers.cache import NoCacheProvider
from src.providers.exceptions import CacheError


class TestIdempotencyService:
    """Test idempotency records."""

    @pytest.fixture
    def service(self, redis_cache):
        return IdempotencyService(redis_cache, ttl_hours=24)

    def test_first_processing_then_duplicate(self, service):
        assert service.is_first_processing("evt-1") is True
        assert service.is_first_processing("evt-1") is False
        assert service.get_processing_status("evt-1") == "PROCESSING"

    def test_empty_event_id_is_never_duplicate(self, service):
        assert service.is_first_processing(None)
        assert service.is_first_processing("")
        assert service.is_first_processing("")

    def test_mark_as_processed(self, service):
        service.is_first_processing("evt-1")
        service.mark_as_processed("evt-1", "notification-1")

        assert service.get_processing_status("evt-1") == "COMPLETED:notification-1"
        assert not service.is_first_processing("evt-1")

    def test_mark_as_failed(self, service):
        service.is_first_processing("evt-1")
        service.mark_as_failed("evt-1", "SMTP connection refused")

        assert service.get_processing_status("evt-1") == "FAILED:SMTP connection refused"

    def test_remove_record_allows_reprocessing(self, service):
        service.is_first_processing("evt-1")
        service.remove_record("evt-1")

        assert service.get_processing_status("evt-1") is None
        assert service.is_first_processing("evt-1")

    def test_records_expire(self, service, redis_client):
        service.is_first_processing("evt-1")

        ttl = redis_client.ttl("idempotency:notification:evt-1")
        assert 0 < ttl <= 24 * 3600

    def test_disabled(self, redis_cache):
        service = IdempotencyService(redis_cache, enabled=False)

        assert service.is_first_processing("evt-1")
        assert service.is_first_processing("evt-1")

    def test_cache_failure_fails_open(self):
        cache = MagicMock()
        cache.put_if_absent.side_effect = CacheError("Connection refused")
        cache.get.side_effect = CacheError("Connection refused")
        service = IdempotencyService(cache)

        assert service.is_first_processing("evt-1") is True
        assert service.get_processing_status("evt-1") is None

    def test_without_shared_store_everything_is_first(self):
        service = IdempotencyService(NoCacheProvider())

        assert service.is_first_processing("evt-1")
        assert service.is_first_processing("evt-1")
