"""Repositories for the notifications feature."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, select, update

from confession_service.core.database.repository import BaseRepository
from confession_service.features.notifications.models import (
    Notification,
    NotificationPreference,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class NotificationPreferenceRepository(BaseRepository[NotificationPreference]):
    """Repository for NotificationPreference model."""

    def __init__(self) -> None:
        """Initialize with NotificationPreference model."""
        super().__init__(NotificationPreference)

    async def get_for_user(
        self,
        session: AsyncSession,
        user_id: str,
    ) -> NotificationPreference | None:
        """Get the preference row for a user, if one exists."""
        return await self.get_by(session, NotificationPreference.user_id, user_id)


class NotificationRepository(BaseRepository[Notification]):
    """Repository for Notification model.

    Provides the read-state queries used by the REST API and live channel,
    and the recent-unread lookup used for batching.
    """

    def __init__(self) -> None:
        """Initialize with Notification model."""
        super().__init__(Notification)

    async def get_for_user(
        self,
        session: AsyncSession,
        notification_id: UUID,
        user_id: str,
    ) -> Notification | None:
        """Get a notification only if it belongs to the given user."""
        stmt = select(Notification).where(
            and_(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            ),
        )
        result = await session.execute(stmt)
        notification = result.scalar_one_or_none()

        self._lazy.debug(
            lambda: f"db.get_for_user({notification_id}, {user_id=}) -> {'found' if notification else 'not found'}"
        )
        return notification

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Notification], int]:
        """List notifications for a user, newest first.

        Args:
            session: Database session
            user_id: User identifier
            unread_only: Only return unread notifications
            limit: Max results
            offset: Pagination offset

        Returns:
            Tuple of (notifications, total_count)
        """
        stmt = select(Notification).where(Notification.user_id == user_id)

        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))

        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
        result = await self.search(session, stmt, limit=limit, offset=offset)
        return result.items, result.total

    async def get_unread_count(self, session: AsyncSession, user_id: str) -> int:
        """Get count of unread notifications for a user."""
        stmt = select(func.count()).where(
            and_(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            ),
        )
        count = (await session.execute(stmt)).scalar() or 0

        self._lazy.debug(lambda: f"db.get_unread_count({user_id=}) -> {count}")
        return count

    async def list_recent_unread(
        self,
        session: AsyncSession,
        user_id: str,
        kind: str,
        since: datetime,
    ) -> Sequence[Notification]:
        """Unread notifications of a kind created after ``since``, oldest first."""
        stmt = (
            select(Notification)
            .where(
                and_(
                    Notification.user_id == user_id,
                    Notification.kind == kind,
                    Notification.is_read.is_(False),
                    Notification.created_at > since,
                ),
            )
            .order_by(Notification.created_at.asc(), Notification.id.asc())
        )
        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(lambda: f"db.list_recent_unread({user_id=}, {kind=}) -> {len(items)} notifications")
        return items

    async def mark_as_read(
        self,
        session: AsyncSession,
        notification: Notification,
        *,
        now: datetime | None = None,
    ) -> Notification:
        """Mark a notification as read. Already-read notifications keep their read_at."""
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = now or datetime.now(UTC)
            await session.flush()
            self._lazy.debug(lambda: f"db.mark_as_read({notification.id}) -> marked")
        return notification

    async def mark_all_as_read(self, session: AsyncSession, user_id: str) -> int:
        """Mark every unread notification of a user as read.

        Returns:
            Number of notifications updated
        """
        stmt = (
            update(Notification)
            .where(
                and_(
                    Notification.user_id == user_id,
                    Notification.is_read.is_(False),
                ),
            )
            .values(is_read=True, read_at=datetime.now(UTC))
        )
        result = await session.execute(stmt)
        updated = result.rowcount or 0

        self._lazy.debug(lambda: f"db.mark_all_as_read({user_id=}) -> {updated} updated")
        return updated


# Factory functions for dependency injection
_preference_repository: NotificationPreferenceRepository | None = None
_notification_repository: NotificationRepository | None = None


def get_notification_preference_repository() -> NotificationPreferenceRepository:
    """Get NotificationPreferenceRepository singleton instance."""
    global _preference_repository
    if _preference_repository is None:
        _preference_repository = NotificationPreferenceRepository()
    return _preference_repository


def get_notification_repository() -> NotificationRepository:
    """Get NotificationRepository singleton instance."""
    global _notification_repository
    if _notification_repository is None:
        _notification_repository = NotificationRepository()
    return _notification_repository
