"""FastAPI dependencies for the notifications feature.

Example usage:
    from confession_service.features.notifications.dependencies import (
        CurrentUserIdDep,
        NotificationServiceDep,
        SessionDep,
    )

    @router.get("/notifications")
    async def list_notifications(
        user_id: CurrentUserIdDep,
        session: SessionDep,
        service: NotificationServiceDep,
    ) -> NotificationListResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from confession_service.core.dependencies import (
    AdminUserDep,
    AuthUserDep,
    CurrentUserIdDep,
    ServiceCallerDep,
    SessionDep,
)
from confession_service.features.notifications.dead_letter import (
    DeadLetterService,
    get_dead_letter_service,
)
from confession_service.features.notifications.preferences import (
    PreferenceService,
    get_preference_service,
)
from confession_service.features.notifications.service import (
    NotificationService,
    get_notification_service,
)
from confession_service.features.notifications.templates import (
    TemplateRegistry,
    TemplateRenderer,
    get_template_registry,
    get_template_renderer,
)

# Service dependencies
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
PreferenceServiceDep = Annotated[PreferenceService, Depends(get_preference_service)]
DeadLetterServiceDep = Annotated[DeadLetterService, Depends(get_dead_letter_service)]

# Template dependencies
TemplateRegistryDep = Annotated[TemplateRegistry, Depends(get_template_registry)]
TemplateRendererDep = Annotated[TemplateRenderer, Depends(get_template_renderer)]


__all__ = [
    "AdminUserDep",
    "AuthUserDep",
    "CurrentUserIdDep",
    "DeadLetterServiceDep",
    "NotificationServiceDep",
    "PreferenceServiceDep",
    "ServiceCallerDep",
    "SessionDep",
    "TemplateRegistryDep",
    "TemplateRendererDep",
]
