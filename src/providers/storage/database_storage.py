"""Database storage provider using SQLAlchemy with SQLite."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.entities import (
    DeviceToken,
    EmailNotification,
    NotificationStatus,
    Platform,
    PushNotification,
    parse_provider_type,
)
from src.core.interfaces import DeviceTokenRepository, NotificationRepository, StorageService
from src.providers.exceptions import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NotificationColumns:
    """Columns shared by every notification table."""

    id = Column(String, primary_key=True)
    status = Column(String, nullable=False, index=True)
    provider_type = Column(String, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    user_id = Column(String, nullable=True, index=True)
    event_id = Column(String, nullable=True, index=True)
    service_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime, nullable=True)


class EmailNotificationModel(NotificationColumns, Base):
    """SQLAlchemy model for email notifications."""
    __tablename__ = "email_notifications"

    recipients = Column(Text, nullable=False)  # JSON {"to": [], "cc": [], "bcc": []}
    from_address = Column(String, nullable=True)
    subject = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    template_id = Column(String, nullable=True)
    attachment_urls = Column(Text, nullable=True)  # JSON list


class PushNotificationModel(NotificationColumns, Base):
    """SQLAlchemy model for push notifications."""
    __tablename__ = "push_notifications"

    device_token_id = Column(String, nullable=True)
    device_token = Column(Text, nullable=True)
    platform = Column(String, nullable=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    data = Column(Text, nullable=True)  # JSON object
    image_url = Column(String, nullable=True)
    provider_message_id = Column(String, nullable=True)


class DeviceTokenModel(Base):
    """SQLAlchemy model for registered device tokens."""
    __tablename__ = "device_tokens"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    device_token = Column(Text, nullable=False, unique=True)
    platform = Column(String, nullable=False)
    device_model = Column(String, nullable=True)
    os_version = Column(String, nullable=True)
    app_version = Column(String, nullable=True)
    language = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


def _notification_columns(entity) -> Dict[str, Any]:
    return {
        "id": entity.id,
        "status": entity.status.value,
        "provider_type": entity.provider_type.value if entity.provider_type else None,
        "retry_count": entity.retry_count,
        "error_message": entity.error_message,
        "processing_time_ms": entity.processing_time_ms,
        "user_id": entity.user_id,
        "event_id": entity.event_id,
        "service_id": entity.service_id,
        "created_at": entity.created_at,
        "updated_at": entity.updated_at,
        "sent_at": entity.sent_at,
    }


def _notification_fields(model) -> Dict[str, Any]:
    return {
        "id": model.id,
        "status": NotificationStatus(model.status),
        "provider_type": parse_provider_type(model.provider_type),
        "retry_count": model.retry_count,
        "error_message": model.error_message,
        "processing_time_ms": model.processing_time_ms,
        "user_id": model.user_id,
        "event_id": model.event_id,
        "service_id": model.service_id,
        "created_at": _as_utc(model.created_at),
        "updated_at": _as_utc(model.updated_at),
        "sent_at": _as_utc(model.sent_at),
    }


def _email_to_model(entity: EmailNotification) -> EmailNotificationModel:
    return EmailNotificationModel(
        **_notification_columns(entity),
        recipients=json.dumps({"to": entity.to, "cc": entity.cc, "bcc": entity.bcc}),
        from_address=entity.from_address,
        subject=entity.subject,
        body=entity.body,
        template_id=entity.template_id,
        attachment_urls=json.dumps(entity.attachment_urls),
    )


def _model_to_email(model: EmailNotificationModel) -> EmailNotification:
    recipients = json.loads(model.recipients or "{}")
    return EmailNotification(
        **_notification_fields(model),
        to=recipients.get("to", []),
        cc=recipients.get("cc", []),
        bcc=recipients.get("bcc", []),
        from_address=model.from_address,
        subject=model.subject,
        body=model.body,
        template_id=model.template_id,
        attachment_urls=json.loads(model.attachment_urls or "[]"),
    )


def _push_to_model(entity: PushNotification) -> PushNotificationModel:
    return PushNotificationModel(
        **_notification_columns(entity),
        device_token_id=entity.device_token_id,
        device_token=entity.device_token,
        platform=entity.platform.value if entity.platform else None,
        title=entity.title,
        body=entity.body,
        data=json.dumps(entity.data),
        image_url=entity.image_url,
        provider_message_id=entity.provider_message_id,
    )


def _model_to_push(model: PushNotificationModel) -> PushNotification:
    return PushNotification(
        **_notification_fields(model),
        device_token_id=model.device_token_id,
        device_token=model.device_token,
        platform=Platform(model.platform) if model.platform else None,
        title=model.title,
        body=model.body,
        data=json.loads(model.data or "{}"),
        image_url=model.image_url,
        provider_message_id=model.provider_message_id,
    )


def _token_to_model(token: DeviceToken) -> DeviceTokenModel:
    return DeviceTokenModel(
        id=token.id,
        user_id=token.user_id,
        device_token=token.device_token,
        platform=token.platform.value,
        device_model=token.device_model,
        os_version=token.os_version,
        app_version=token.app_version,
        language=token.language,
        active=token.active,
        created_at=token.created_at,
        updated_at=token.updated_at,
    )


def _model_to_token(model: DeviceTokenModel) -> DeviceToken:
    return DeviceToken(
        id=model.id,
        user_id=model.user_id,
        device_token=model.device_token,
        platform=Platform(model.platform),
        device_model=model.device_model,
        os_version=model.os_version,
        app_version=model.app_version,
        language=model.language,
        active=model.active,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
    )


class SqlNotificationRepository(NotificationRepository[T], Generic[T]):
    """Notification repository over one table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        model_class: Type,
        to_model: Callable[[T], Any],
        to_entity: Callable[[Any], T],
    ):
        self.SessionLocal = session_factory
        self.model_class = model_class
        self._to_model = to_model
        self._to_entity = to_entity

    async def save(self, entity: T) -> T:
        try:
            with self.SessionLocal() as session:
                session.merge(self._to_model(entity))
                session.commit()
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Failed to save {self.model_class.__tablename__} row {entity.id}: {e}")
            raise StorageError(f"Failed to save notification {entity.id}: {e}") from e

    async def save_all(self, entities: List[T]) -> List[T]:
        if not entities:
            return []
        try:
            with self.SessionLocal() as session:
                for entity in entities:
                    session.merge(self._to_model(entity))
                session.commit()
            logger.debug(f"Saved {len(entities)} rows to {self.model_class.__tablename__}")
            return entities
        except SQLAlchemyError as e:
            logger.error(f"Failed to save batch of {len(entities)} notifications: {e}")
            raise StorageError(f"Failed to save notification batch: {e}") from e

    async def find_by_id(self, notification_id: str) -> Optional[T]:
        try:
            with self.SessionLocal() as session:
                model = session.get(self.model_class, notification_id)
                return self._to_entity(model) if model is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load notification {notification_id}: {e}") from e


class SqlDeviceTokenRepository(DeviceTokenRepository):
    """Device token repository over the device_tokens table."""

    def __init__(self, session_factory: sessionmaker):
        self.SessionLocal = session_factory

    async def save(self, token: DeviceToken) -> DeviceToken:
        try:
            with self.SessionLocal() as session:
                session.merge(_token_to_model(token))
                session.commit()
            return token
        except SQLAlchemyError as e:
            logger.error(f"Failed to save device token {token.id}: {e}")
            raise StorageError(f"Failed to save device token: {e}") from e

    async def find_by_token(self, device_token: str) -> Optional[DeviceToken]:
        try:
            with self.SessionLocal() as session:
                model = session.query(DeviceTokenModel).filter_by(device_token=device_token).first()
                return _model_to_token(model) if model is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load device token: {e}") from e

    async def find_by_user(self, user_id: str, active_only: bool = True) -> List[DeviceToken]:
        try:
            with self.SessionLocal() as session:
                query = session.query(DeviceTokenModel).filter_by(user_id=user_id)
                if active_only:
                    query = query.filter_by(active=True)
                return [_model_to_token(m) for m in query.order_by(DeviceTokenModel.created_at).all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load device tokens for user {user_id}: {e}") from e

    async def delete_by_token(self, device_token: str) -> bool:
        try:
            with self.SessionLocal() as session:
                deleted = session.query(DeviceTokenModel).filter_by(device_token=device_token).delete()
                session.commit()
                return deleted > 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete device token: {e}") from e


class DatabaseStorage(StorageService):
    """Database storage provider using SQLAlchemy with SQLite.

    Supports an optional SQLite busy timeout and in-memory databases for
    tests (``:memory:``), which keep their schema across sessions.
    """

    def __init__(
        self,
        database_path: str = "data/herald.db",
        connection_timeout: Optional[float] = None,
        echo: bool = False,
        in_memory: Optional[bool] = None,
    ):
        """Initialize database storage provider.

        Args:
            database_path: Path to SQLite database file or ':memory:'
            connection_timeout: Busy timeout in seconds for SQLite
            echo: Enable SQL echo for debugging
            in_memory: Force in-memory mode (overrides database_path when True)
        """
        if in_memory or database_path == ":memory:":
            self.database_path = None
            self.database_url = "sqlite+pysqlite:///:memory:"
            use_memory = True
        else:
            self.database_path = Path(database_path)
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.database_url = f"sqlite+pysqlite:///{self.database_path}"
            use_memory = False

        self.connection_timeout = connection_timeout
        self.echo = echo

        engine_kwargs: Dict[str, Any] = {"echo": self.echo}
        connect_args: Dict[str, Any] = {"check_same_thread": False}
        if self.connection_timeout is not None:
            connect_args["timeout"] = float(self.connection_timeout)
        engine_kwargs["connect_args"] = connect_args

        if use_memory:
            engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._initialize_database()

        self._email_notifications = SqlNotificationRepository(
            self.SessionLocal, EmailNotificationModel, _email_to_model, _model_to_email
        )
        self._push_notifications = SqlNotificationRepository(
            self.SessionLocal, PushNotificationModel, _push_to_model, _model_to_push
        )
        self._device_tokens = SqlDeviceTokenRepository(self.SessionLocal)

        logger.debug(
            f"Database storage initialized (memory={use_memory}, path={database_path}, "
            f"timeout={self.connection_timeout})"
        )

    @property
    def email_notifications(self) -> SqlNotificationRepository[EmailNotification]:
        return self._email_notifications

    @property
    def push_notifications(self) -> SqlNotificationRepository[PushNotification]:
        return self._push_notifications

    @property
    def device_tokens(self) -> SqlDeviceTokenRepository:
        return self._device_tokens

    def _initialize_database(self) -> None:
        """Initialize database schema."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.debug("Database schema initialized successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database schema: {e}")
            raise StorageError(f"Failed to initialize database schema: {e}") from e

    async def health_check(self) -> bool:
        """
        Check if database is accessible and can perform basic operations.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            with self.SessionLocal() as session:
                session.execute(text("SELECT 1"))
                return True
        except Exception:
            return False

    async def close(self) -> None:
        self.engine.dispose()
        logger.debug("Database engine disposed")

    def __str__(self) -> str:
        return f"DatabaseStorage(url={self.database_url})"
