"""Tests for the SQLAlchemy storage provider."""

from datetime import timezone

import pytest

from src.core.entities import (
    DeviceToken,
    EmailNotification,
    EmailProviderType,
    NotificationStatus,
    Platform,
    PushNotification,
    PushProviderType,
)
from src.providers.storage.database_storage import DatabaseStorage


@pytest.fixture
def db_storage():
    return DatabaseStorage(database_path=":memory:", in_memory=True, connection_timeout=5.0)


@pytest.mark.asyncio
async def test_email_notification_round_trip(db_storage):
    notification = EmailNotification(
        to=["alice@example.com"],
        cc=["bob@example.com"],
        bcc=["audit@example.com"],
        from_address="noreply@example.com",
        subject="Welcome",
        body="<p>Hello</p>",
        attachment_urls=["terms.pdf"],
        user_id="user-1",
        event_id="evt-1",
        service_id="signup-service",
    )
    await db_storage.email_notifications.save(notification)

    loaded = await db_storage.email_notifications.find_by_id(notification.id)

    assert loaded.to == ["alice@example.com"]
    assert loaded.cc == ["bob@example.com"]
    assert loaded.bcc == ["audit@example.com"]
    assert loaded.attachment_urls == ["terms.pdf"]
    assert loaded.status == NotificationStatus.PENDING
    assert loaded.provider_type is None
    assert loaded.created_at.tzinfo == timezone.utc


@pytest.mark.asyncio
async def test_save_updates_existing_row(db_storage):
    notification = EmailNotification(to=["alice@example.com"], subject="s", body="b")
    await db_storage.email_notifications.save(notification)

    notification.mark_processing()
    notification.mark_sent(EmailProviderType.SENDGRID, processing_time_ms=120)
    await db_storage.email_notifications.save(notification)

    loaded = await db_storage.email_notifications.find_by_id(notification.id)
    assert loaded.status == NotificationStatus.SENT
    assert loaded.provider_type == EmailProviderType.SENDGRID
    assert loaded.processing_time_ms == 120
    assert loaded.sent_at is not None


@pytest.mark.asyncio
async def test_push_notification_round_trip(db_storage):
    notification = PushNotification(
        device_token_id="dt-1",
        device_token="fcm-token",
        platform=Platform.ANDROID,
        title="Order shipped",
        body="On its way",
        data={"order_id": "1001"},
        provider_type=PushProviderType.FCM,
        provider_message_id="projects/x/messages/1",
    )
    await db_storage.push_notifications.save(notification)

    loaded = await db_storage.push_notifications.find_by_id(notification.id)

    assert loaded.platform == Platform.ANDROID
    assert loaded.data == {"order_id": "1001"}
    assert loaded.provider_type == PushProviderType.FCM
    assert loaded.provider_message_id == "projects/x/messages/1"


@pytest.mark.asyncio
async def test_save_all(db_storage):
    notifications = [EmailNotification(to=[f"u{n}@example.com"], subject="s", body="b") for n in range(3)]

    saved = await db_storage.email_notifications.save_all(notifications)

    assert len(saved) == 3
    for notification in notifications:
        assert await db_storage.email_notifications.find_by_id(notification.id) is not None
    assert await db_storage.email_notifications.save_all([]) == []


@pytest.mark.asyncio
async def test_find_missing_notification(db_storage):
    assert await db_storage.email_notifications.find_by_id("missing") is None
    assert await db_storage.push_notifications.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_device_tokens(db_storage):
    repo = db_storage.device_tokens
    first = DeviceToken(user_id="user-1", device_token="tok-1", platform=Platform.IOS, device_model="iPhone")
    second = DeviceToken(user_id="user-1", device_token="tok-2", platform=Platform.WEB)
    await repo.save(first)
    await repo.save(second)

    second.deactivate()
    await repo.save(second)

    loaded = await repo.find_by_token("tok-1")
    assert loaded.id == first.id
    assert loaded.platform == Platform.IOS
    assert loaded.device_model == "iPhone"

    assert [t.device_token for t in await repo.find_by_user("user-1")] == ["tok-1"]
    assert len(await repo.find_by_user("user-1", active_only=False)) == 2

    assert await repo.delete_by_token("tok-1") is True
    assert await repo.delete_by_token("tok-1") is False
    assert await repo.find_by_token("tok-1") is None


@pytest.mark.asyncio
async def test_file_database(tmp_path):
    storage = DatabaseStorage(database_path=str(tmp_path / "data" / "herald.db"))
    notification = EmailNotification(to=["a@example.com"], subject="s", body="b")
    await storage.email_notifications.save(notification)
    await storage.close()

    reopened = DatabaseStorage(database_path=str(tmp_path / "data" / "herald.db"))
    assert await reopened.email_notifications.find_by_id(notification.id) is not None
    await reopened.close()


@pytest.mark.asyncio
async def test_health_check(db_storage):
    assert await db_storage.health_check() is True
