"""aiohttp routes exposing the notification dispatcher."""

import logging
from typing import Any, Dict, Optional

from aiohttp import web

from src.core.entities import EmailPriority, EmailRequest, Notification, Platform, PushRequest
from src.core.exceptions import (
    DeviceTokenNotFoundError,
    DuplicateNotificationError,
    NotificationNotFoundError,
    NotificationSendException,
    ProviderNotAvailableError,
    ValidationError,
)
from src.core.usecases import DeliveryReceipt, NotificationDispatcher

from .rate_limit_middleware import NOTIFICATION_PATH_PREFIX, SERVICE_ID_HEADER, setup_rate_limiting

logger = logging.getLogger(__name__)

DISPATCHER_KEY = web.AppKey("dispatcher", NotificationDispatcher)


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "status": notification.status.value,
        "provider": notification.provider_type.value if notification.provider_type else None,
        "retryCount": notification.retry_count,
        "errorMessage": notification.error_message,
        "processingTimeMs": notification.processing_time_ms,
        "createdAt": notification.created_at.isoformat(),
        "updatedAt": notification.updated_at.isoformat(),
    }


def receipt_to_dict(receipt: DeliveryReceipt) -> Dict[str, Any]:
    return {
        "notificationId": receipt.notification_id,
        "status": receipt.status.value,
        "message": receipt.message,
        "statusCheckUrl": receipt.status_check_url,
        "acceptedAt": receipt.accepted_at.isoformat(),
    }


def _error(status: int, code: str, message: str, **extra) -> web.Response:
    return web.json_response({"error": code, "message": message, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Translate dispatcher exceptions into JSON error responses."""
    try:
        return await handler(request)
    except ValidationError as e:
        return _error(400, "VALIDATION_FAILED", str(e), errors=e.errors)
    except DuplicateNotificationError as e:
        return _error(409, "DUPLICATE_REQUEST", str(e), eventId=e.event_id, status=e.status)
    except (NotificationNotFoundError, DeviceTokenNotFoundError) as e:
        return _error(404, "NOT_FOUND", str(e))
    except ProviderNotAvailableError as e:
        return _error(503, "PROVIDER_UNAVAILABLE", str(e))
    except NotificationSendException as e:
        logger.error(f"Delivery failed for {request.path}: {e}")
        return _error(502, "DELIVERY_FAILED", str(e), notificationId=e.notification_id)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError(f"Request body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _service_id(request: web.Request, body: Dict[str, Any]) -> Optional[str]:
    return body.get("serviceId") or request.headers.get(SERVICE_ID_HEADER)


def parse_email_request(body: Dict[str, Any], service_id: Optional[str] = None) -> EmailRequest:
    """
    Build an email request from a JSON body.

    Raises:
        ValidationError: If a field has the wrong shape
    """
    try:
        return EmailRequest(
            to=list(body.get("to") or []),
            cc=list(body.get("cc") or []),
            bcc=list(body.get("bcc") or []),
            subject=body.get("subject") or "",
            body=body.get("body") or "",
            html=bool(body.get("html", False)),
            from_address=body.get("from"),
            priority=EmailPriority[str(body.get("priority", "normal")).upper()],
            user_id=body.get("userId"),
            event_id=body.get("eventId"),
            service_id=service_id,
        )
    except KeyError as e:
        raise ValidationError(f"Unknown email priority: {e.args[0].lower()}") from e
    except TypeError as e:
        raise ValidationError(f"Malformed email request: {e}") from e


def parse_push_request(body: Dict[str, Any], service_id: Optional[str] = None) -> PushRequest:
    """
    Build a push request from a JSON body.

    Raises:
        ValidationError: If a field has the wrong shape
    """
    try:
        return PushRequest(
            device_token=body.get("deviceToken"),
            title=body.get("title") or "",
            body=body.get("body") or "",
            data={str(k): str(v) for k, v in (body.get("data") or {}).items()},
            image_url=body.get("imageUrl"),
            sound=body.get("sound"),
            badge=body.get("badge"),
            click_action=body.get("clickAction"),
            priority=int(body.get("priority", 5)),
            ttl_seconds=body.get("ttlSeconds"),
            platform=Platform(body["platform"]) if body.get("platform") else None,
            user_id=body.get("userId"),
            event_id=body.get("eventId"),
            service_id=service_id,
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed push request: {e}") from e


async def send_email(request: web.Request) -> web.Response:
    body = await _read_json(request)
    email_request = parse_email_request(body, _service_id(request, body))
    notification = await request.app[DISPATCHER_KEY].send_email(email_request)
    return web.json_response(notification_to_dict(notification))


async def send_email_async(request: web.Request) -> web.Response:
    body = await _read_json(request)
    email_request = parse_email_request(body, _service_id(request, body))
    receipt = await request.app[DISPATCHER_KEY].send_email_async(email_request)
    return web.json_response(receipt_to_dict(receipt), status=202)


async def send_push(request: web.Request) -> web.Response:
    body = await _read_json(request)
    push_request = parse_push_request(body, _service_id(request, body))
    notification = await request.app[DISPATCHER_KEY].send_push(push_request)
    return web.json_response(notification_to_dict(notification))


async def send_push_async(request: web.Request) -> web.Response:
    body = await _read_json(request)
    push_request = parse_push_request(body, _service_id(request, body))
    dispatcher = request.app[DISPATCHER_KEY]
    if push_request.device_token:
        receipts = [await dispatcher.send_push_async(push_request)]
    else:
        receipts = await dispatcher.send_push_to_user(push_request)
    return web.json_response([receipt_to_dict(r) for r in receipts], status=202)


async def get_status(request: web.Request) -> web.Response:
    dispatcher = request.app[DISPATCHER_KEY]
    channel = request.match_info["channel"]
    notification_id = request.match_info["notification_id"]
    if channel == "email":
        notification = await dispatcher.get_email_status(notification_id)
    elif channel == "push":
        notification = await dispatcher.get_push_status(notification_id)
    else:
        raise web.HTTPNotFound(text=f"Unknown channel: {channel}")
    return web.json_response(notification_to_dict(notification))


def create_web_app(dispatcher: NotificationDispatcher, rate_limiter=None) -> web.Application:
    """
    Build the HTTP application for the notification endpoints.

    The rate limiting middleware runs first so rejected callers never reach
    validation or delivery. Without a limiter the endpoints are unthrottled.
    """
    app = web.Application()
    if rate_limiter is not None:
        setup_rate_limiting(app, rate_limiter)
    else:
        logger.warning("Rate limiter not configured, notification endpoints are not throttled")
    app.middlewares.append(error_middleware)
    app[DISPATCHER_KEY] = dispatcher

    prefix = NOTIFICATION_PATH_PREFIX
    app.router.add_post(f"{prefix}/email", send_email)
    app.router.add_post(f"{prefix}/email/async", send_email_async)
    app.router.add_post(f"{prefix}/push", send_push)
    app.router.add_post(f"{prefix}/push/async", send_push_async)
    app.router.add_get(f"{prefix}/{{channel}}/status/{{notification_id}}", get_status)
    return app
