"""Test utilities and helper functions.

Usage:
    from tests.utils import bearer, make_notification, make_preference

    headers = bearer("user-1")
    notification = await make_notification(db_session, user_id="user-1")
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from confession_service.features.notifications.models import (
    Notification,
    NotificationKind,
    NotificationPreference,
)
from confession_service.features.notifications.preferences import PreferenceDefaults
from confession_service.infra.email import EmailMessage, EmailResult

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


# ============================================================================
# Tokens
# ============================================================================


def make_token(user_id: str, roles: list[str] | None = None) -> str:
    """Sign a bearer token with the test secret."""
    from confession_service.infra.auth import get_token_verifier

    return get_token_verifier().issue(user_id, roles=roles or [])


def bearer(user_id: str, roles: list[str] | None = None) -> dict[str, str]:
    """Authorization header for ``user_id``."""
    return {"Authorization": f"Bearer {make_token(user_id, roles)}"}


# ============================================================================
# Model factories
# ============================================================================


async def make_preference(session: AsyncSession, user_id: str, **overrides: Any) -> NotificationPreference:
    """Persist a preference record with defaults plus ``overrides``."""
    values = PreferenceDefaults().as_dict()
    values.update(overrides)
    preference = NotificationPreference(user_id=user_id, **values)
    session.add(preference)
    await session.flush()
    return preference


async def make_notification(
    session: AsyncSession,
    *,
    user_id: str = "user-1",
    kind: str = NotificationKind.NEW_MESSAGE,
    title: str = "New Message",
    message: str = "hello",
    metadata: dict[str, Any] | None = None,
    is_read: bool = False,
    is_email_sent: bool = False,
    created_at: datetime | None = None,
) -> Notification:
    """Persist a notification row."""
    notification = Notification(
        user_id=user_id,
        kind=str(kind),
        title=title,
        message=message,
        metadata_=metadata or {},
        is_read=is_read,
        is_email_sent=is_email_sent,
    )
    if created_at is not None:
        notification.created_at = created_at
    session.add(notification)
    await session.flush()
    await session.refresh(notification)
    return notification


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


# ============================================================================
# Email
# ============================================================================


class RecordingEmailClient:
    """Email client double that records messages and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []
        self.fail_with: str | None = None

    async def send(self, message: EmailMessage) -> EmailResult:
        if self.fail_with is not None:
            return EmailResult.failure_result(self.fail_with, error_code="SEND_FAILED", backend="test")
        self.sent.append(message)
        return EmailResult.success_result(
            message_id=f"test-{len(self.sent)}",
            recipients=list(message.to),
            backend="test",
        )

    async def health_check(self) -> bool:
        return True
