"""Live notifications channel.

Endpoint:
- WS /ws/notifications: authenticated per-user push channel

A connection authenticates with the same bearer token as the REST API, sent
either as the ``token`` query parameter or in the ``Authorization`` header.
Connections that fail authentication are closed before they are accepted.
Replies to client events go only to the connection that sent them; pushes of
new notifications reach every connection of the user.

Message Protocol:
    Client -> Server:
    - {"event": "mark-read", "data": {"notificationId": "..."}}
    - {"event": "mark-all-read"}
    - {"event": "get-unread-count"}

    Server -> Client:
    - {"event": "new-notification", "data": {...}}
    - {"event": "unread-count", "data": {"count": 3}}
    - {"event": "notification-read", "data": {"notificationId": "..."}}
    - {"event": "all-notifications-read", "data": {}}
    - {"event": "ping"}
    - {"event": "error", "data": {"message": "..."}}
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from confession_service.core.exceptions import AppException
from confession_service.core.settings import get_websocket_settings
from confession_service.features.notifications.service import (
    NotificationService,
    get_notification_service,
)
from confession_service.infra.auth import get_token_verifier
from confession_service.infra.database.session import get_async_session
from confession_service.infra.metrics.prometheus import websocket_messages_received_total
from confession_service.infra.realtime import get_presence_manager

logger = logging.getLogger(__name__)

ws_settings = get_websocket_settings()
router = APIRouter(tags=["realtime"])

WS_SOURCE = "websocket"


def _extract_token(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


@router.websocket(ws_settings.path)
async def notifications_socket(
    websocket: WebSocket,
    token: Annotated[str | None, Query(description="Bearer token")] = None,
) -> None:
    """Authenticate, join the user's presence group and serve client events."""
    if not ws_settings.enabled:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="WebSocket disabled")
        return

    raw_token = _extract_token(websocket, token)
    if raw_token is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication required")
        return
    try:
        user = get_token_verifier().verify(raw_token)
    except AppException as e:
        logger.info("WebSocket authentication failed", extra={"reason": e.detail})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    presence = get_presence_manager()
    service = get_notification_service()
    connection_id: str | None = None

    try:
        connection_id = await presence.connect(websocket, user.user_id)
        await _send_unread_count(websocket, service, user.user_id)
        await _handle_messages(websocket, service, user.user_id)

    except ConnectionRefusedError as e:
        logger.warning("WebSocket connection refused", extra={"reason": str(e), "user_id": user.user_id})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=str(e))

    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected normally")

    finally:
        if connection_id is not None:
            await presence.disconnect(connection_id)


async def _send_unread_count(websocket: WebSocket, service: NotificationService, user_id: str) -> None:
    async with get_async_session() as session:
        count = await service.get_unread_count(session, user_id)
    await websocket.send_json({"event": "unread-count", "data": {"count": count}})


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


async def _handle_messages(
    websocket: WebSocket,
    service: NotificationService,
    user_id: str,
) -> None:
    """Serve client events until the socket closes."""
    async for raw_message in websocket.iter_text():
        if len(raw_message) > ws_settings.max_message_size:
            await _send_error(websocket, "Message too large")
            continue

        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError:
            await _send_error(websocket, "Invalid JSON message")
            continue
        if not isinstance(message, dict):
            await _send_error(websocket, "Invalid message")
            continue

        event = message.get("event")
        websocket_messages_received_total.labels(message_type=str(event or "unknown")).inc()

        try:
            if event == "mark-read":
                await _mark_read(websocket, service, user_id, message.get("data") or {})
            elif event == "mark-all-read":
                await _mark_all_read(websocket, service, user_id)
            elif event == "get-unread-count":
                await _send_unread_count(websocket, service, user_id)
            elif event == "pong":
                continue
            else:
                await _send_error(websocket, f"Unknown event: {event}")
        except AppException as e:
            await _send_error(websocket, e.detail)
        except Exception:
            logger.exception("Error handling WebSocket message", extra={"user_id": user_id, "event": event})
            await _send_error(websocket, "Internal error processing message")


async def _mark_read(
    websocket: WebSocket,
    service: NotificationService,
    user_id: str,
    data: dict[str, Any],
) -> None:
    raw_id = data.get("notificationId")
    try:
        notification_id = UUID(str(raw_id))
    except ValueError:
        await _send_error(websocket, "Invalid notificationId")
        return

    async with get_async_session() as session:
        await service.mark_as_read(session, notification_id, user_id, source=WS_SOURCE)
        count = await service.get_unread_count(session, user_id)

    await websocket.send_json({"event": "notification-read", "data": {"notificationId": str(notification_id)}})
    await websocket.send_json({"event": "unread-count", "data": {"count": count}})


async def _mark_all_read(websocket: WebSocket, service: NotificationService, user_id: str) -> None:
    async with get_async_session() as session:
        await service.mark_all_as_read(session, user_id, source=WS_SOURCE)

    await websocket.send_json({"event": "all-notifications-read", "data": {}})
    await websocket.send_json({"event": "unread-count", "data": {"count": 0}})
