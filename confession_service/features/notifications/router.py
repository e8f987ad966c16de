"""API router for the notifications feature.

User Endpoints:
- GET /notifications - List the caller's notifications
- GET /notifications/unread-count - Unread count
- PATCH /notifications/{notification_id}/read - Mark one as read
- PATCH /notifications/read-all - Mark all as read

Preference Endpoints:
- GET /notifications/preferences - Current preferences (created with defaults on first read)
- PUT /notifications/preferences - Partial update

Service Endpoints:
- POST /notifications/events - Inbound event from the confession and messaging subsystems
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from confession_service.features.notifications.dependencies import (
    CurrentUserIdDep,
    NotificationServiceDep,
    PreferenceServiceDep,
    ServiceCallerDep,
    SessionDep,
)
from confession_service.features.notifications.schemas import (
    EventResultResponse,
    MarkAllReadResponse,
    NotificationEvent,
    NotificationListResponse,
    NotificationResponse,
    PreferenceResponse,
    PreferenceUpdate,
    UnreadCountResponse,
)
from confession_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
)


# ============================================================================
# User Endpoints - Notifications
# ============================================================================


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List the caller's notifications",
    description="""
List notifications for the authenticated user, newest first.

**Query Parameters:**
- `page`: Page number (default: 1)
- `limit`: Page size (1-100, default: 20)
- `unread_only`: Only return unread notifications (default: false)
""",
)
async def list_notifications(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: NotificationServiceDep,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Page size")] = 20,
    unread_only: Annotated[bool, Query(description="Only return unread notifications")] = False,
) -> NotificationListResponse:
    notifications, total, unread_count = await service.list_notifications(
        session,
        user_id,
        page=page,
        limit=limit,
        unread_only=unread_only,
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        unread_count=unread_count,
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Unread notification count",
)
async def get_unread_count(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: NotificationServiceDep,
) -> UnreadCountResponse:
    return UnreadCountResponse(count=await service.get_unread_count(session, user_id))


@router.patch(
    "/read-all",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def mark_all_read(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: NotificationServiceDep,
) -> MarkAllReadResponse:
    updated = await service.mark_all_as_read(session, user_id)
    return MarkAllReadResponse(updated=updated)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
    description="""
Mark one of the caller's notifications as read.

Notifications owned by other users are reported as not found.
""",
    responses={404: {"description": "Notification not found"}},
)
async def mark_read(
    notification_id: UUID,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    notification = await service.mark_as_read(session, notification_id, user_id)
    return NotificationResponse.model_validate(notification)


# ============================================================================
# User Endpoints - Preferences
# ============================================================================


@router.get(
    "/preferences",
    response_model=PreferenceResponse,
    summary="Get delivery preferences",
)
async def get_preferences(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    preferences: PreferenceServiceDep,
) -> PreferenceResponse:
    preference = await preferences.get_or_create(session, user_id)
    return PreferenceResponse.model_validate(preference)


@router.put(
    "/preferences",
    response_model=PreferenceResponse,
    summary="Update delivery preferences",
    description="""
Partially update the caller's preferences. Omitted fields are unchanged.

**Validation:**
- `batch_window_minutes`: 1-60
- `batch_threshold`: 2-20
- `email_address`: valid email
- `quiet_hours_start` / `quiet_hours_end`: `HH:MM:SS`
- `timezone`: IANA timezone name
""",
)
async def update_preferences(
    payload: PreferenceUpdate,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    preferences: PreferenceServiceDep,
) -> PreferenceResponse:
    preference = await preferences.update(session, user_id, payload.changes())
    return PreferenceResponse.model_validate(preference)


# ============================================================================
# Service Endpoints
# ============================================================================


@router.post(
    "/events",
    response_model=EventResultResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit an inbound event",
    description="""
Run an event through the preference gate. Returns the created notification,
or `{"created": false}` when preferences or quiet hours dropped it.

**Authorization:** `X-Service-Token` header or an admin bearer token.
""",
)
async def submit_event(
    event: NotificationEvent,
    caller: ServiceCallerDep,
    session: SessionDep,
    service: NotificationServiceDep,
) -> EventResultResponse:
    notification = await service.process_event(session, event)
    lazy_logger.debug(lambda: f"event {event.kind} from {caller} -> {'created' if notification else 'dropped'}")
    if notification is None:
        return EventResultResponse(created=False)
    return EventResultResponse(created=True, notification=NotificationResponse.model_validate(notification))
