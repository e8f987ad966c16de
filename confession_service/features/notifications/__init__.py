"""Notification delivery and reliability engine.

This feature turns inbound messaging events into user notifications and
delivers them in-app, live over WebSocket and by email:
- Preference gate with per-kind toggles and timezone-aware quiet hours
- Batching of message bursts into a single summary notification
- Durable email delivery queue with exponential backoff and a dead-letter store
- Operator replay of dead-lettered jobs with an audit trail
- Versioned email templates with deterministic canary rollouts

Architecture:
    - Models: Notification, NotificationPreference
    - Services: NotificationService (gate, batching, read state),
      PreferenceService, EmailDeliveryService + DeliveryWorker, DeadLetterService
    - Templates: TemplateRegistry (versions, lifecycle, rollouts) and TemplateRenderer
    - Routers: user REST API, operator API, live WebSocket gateway

Example:
    ```python
    service = get_notification_service()
    notification = await service.process_event(
        session,
        NotificationEvent(kind="new_message", user_id="user-123", message_id="m-1", preview_text="hi"),
    )
    ```
"""

from confession_service.features.notifications.admin_router import router as admin_router
from confession_service.features.notifications.dead_letter import (
    DeadLetterService,
    get_dead_letter_service,
)
from confession_service.features.notifications.delivery import (
    DeliveryOutcome,
    DeliveryWorker,
    EmailDeliveryService,
    get_delivery_worker,
    start_delivery_worker,
    stop_delivery_worker,
)
from confession_service.features.notifications.gateway import router as gateway_router
from confession_service.features.notifications.models import (
    Notification,
    NotificationKind,
    NotificationPreference,
)
from confession_service.features.notifications.preferences import (
    PreferenceService,
    get_preference_service,
    is_within_quiet_hours,
)
from confession_service.features.notifications.repository import (
    NotificationPreferenceRepository,
    NotificationRepository,
    get_notification_preference_repository,
    get_notification_repository,
)
from confession_service.features.notifications.router import router
from confession_service.features.notifications.schemas import NotificationEvent
from confession_service.features.notifications.service import (
    NotificationService,
    get_notification_service,
)

__all__ = [
    "DeadLetterService",
    "DeliveryOutcome",
    "DeliveryWorker",
    "EmailDeliveryService",
    "Notification",
    "NotificationEvent",
    "NotificationKind",
    "NotificationPreference",
    "NotificationPreferenceRepository",
    "NotificationRepository",
    "NotificationService",
    "PreferenceService",
    "admin_router",
    "gateway_router",
    "get_dead_letter_service",
    "get_delivery_worker",
    "get_notification_preference_repository",
    "get_notification_repository",
    "get_notification_service",
    "get_preference_service",
    "is_within_quiet_hours",
    "router",
    "start_delivery_worker",
    "stop_delivery_worker",
]
