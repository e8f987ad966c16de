"""Notification service: preference gate, batch aggregation and read state.

Inbound events pass through the gate in order:

1. Load (or lazily create) the recipient's preferences.
2. Drop the event when in-app notifications or the kind's toggle are off.
3. Drop the event inside the recipient's quiet hours.
4. For message events, collapse recent unread message notifications into a
   single batch notification once the batch threshold is reached.
5. Enqueue an email delivery job when the kind's email toggle, the global
   email toggle and an address are all present.

Every created notification is pushed to the recipient's live connections.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from confession_service.core.exceptions import NotFoundException
from confession_service.core.services.base import BaseService
from confession_service.features.notifications.metrics import (
    notification_batched_total,
    notification_created_total,
    notification_enqueued_total,
    notification_pushed_total,
    notification_read_total,
    notification_suppressed_total,
)
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
    NotificationRepository,
    get_notification_repository,
)
from confession_service.features.notifications.schemas import NotificationResponse
from confession_service.infra.queue import (
    SEND_EMAIL_JOB,
    DeliveryQueue,
    dedupe_key_for,
    get_delivery_queue,
)
from confession_service.infra.realtime import PresenceManager, get_presence_manager

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from confession_service.features.notifications.schemas import NotificationEvent


def in_app_enabled(preference: NotificationPreference, kind: str) -> bool:
    """Whether in-app notifications of ``kind`` are wanted. ``system`` has no per-kind toggle."""
    if not preference.enable_in_app_notifications:
        return False
    if kind == NotificationKind.NEW_MESSAGE:
        return preference.in_app_new_message
    if kind == NotificationKind.MESSAGE_BATCH:
        return preference.in_app_message_batch
    return True


def email_enabled(preference: NotificationPreference, kind: str) -> bool:
    """Whether an email should be sent for ``kind``. ``system`` notifications are never emailed."""
    if not preference.enable_email_notifications or not preference.email_address:
        return False
    if kind == NotificationKind.NEW_MESSAGE:
        return preference.email_new_message
    if kind == NotificationKind.MESSAGE_BATCH:
        return preference.email_message_batch
    return False


class NotificationService(BaseService):
    """Creates notifications from inbound events and manages read state."""

    def __init__(
        self,
        repository: NotificationRepository | None = None,
        preference_service: PreferenceService | None = None,
        queue: DeliveryQueue | None = None,
        presence: PresenceManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_notification_repository()
        self._preferences = preference_service or get_preference_service()
        self._queue = queue
        self._presence = presence
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue or get_delivery_queue()

    @property
    def presence(self) -> PresenceManager:
        return self._presence or get_presence_manager()

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    async def process_event(
        self,
        session: AsyncSession,
        event: NotificationEvent,
    ) -> Notification | None:
        """Run an inbound event through the preference gate.

        The notification is committed before its delivery job is enqueued,
        so a worker never leases a job for a row it cannot see.

        Returns:
            The created notification, or None when the event was dropped.
        """
        now = self._clock()
        kind = str(event.kind)
        preference = await self._preferences.get_or_create(session, event.user_id)

        if not preference.enable_in_app_notifications:
            return self._suppress(event, "in_app_disabled")
        if not in_app_enabled(preference, kind):
            return self._suppress(event, "kind_disabled")
        if is_within_quiet_hours(preference, now):
            return self._suppress(event, "quiet_hours")

        if kind == NotificationKind.NEW_MESSAGE:
            notification = await self._create_message_notification(session, event, preference, now)
        else:
            notification = await self._create(
                session,
                user_id=event.user_id,
                kind=kind,
                title=event.title or "xConfess",
                message=event.preview_text,
                metadata={},
            )

        await session.commit()

        if email_enabled(preference, notification.kind):
            await self._enqueue_email(notification, preference)

        await self.push_created(session, notification)
        return notification

    async def _create_message_notification(
        self,
        session: AsyncSession,
        event: NotificationEvent,
        preference: NotificationPreference,
        now: datetime,
    ) -> Notification:
        since = now - timedelta(minutes=preference.batch_window_minutes)
        priors = await self._repository.list_recent_unread(
            session,
            event.user_id,
            NotificationKind.NEW_MESSAGE,
            since,
        )

        # A batch needs its own in-app toggle; without it the event stays individual.
        if len(priors) + 1 >= preference.batch_threshold and in_app_enabled(
            preference, NotificationKind.MESSAGE_BATCH
        ):
            return await self._create_batch(session, event, priors, now)

        return await self._create(
            session,
            user_id=event.user_id,
            kind=NotificationKind.NEW_MESSAGE,
            title="New Message",
            message=event.preview_text,
            metadata={"message_id": event.message_id, "sender_id": event.sender_id},
        )

    async def _create_batch(
        self,
        session: AsyncSession,
        event: NotificationEvent,
        priors: Sequence[Notification],
        now: datetime,
    ) -> Notification:
        message_ids = [
            prior.metadata_["message_id"]
            for prior in priors
            if prior.metadata_ and prior.metadata_.get("message_id")
        ]
        message_ids.append(event.message_id)
        count = len(message_ids)

        batch = await self._create(
            session,
            user_id=event.user_id,
            kind=NotificationKind.MESSAGE_BATCH,
            title=f"{count} New Messages",
            message=f"You have {count} unread messages",
            metadata={"message_ids": message_ids, "message_count": count},
        )

        for prior in priors:
            await self._repository.mark_as_read(session, prior, now=now)
        notification_batched_total.inc(len(priors))

        self.logger.info(
            "Collapsed message notifications into batch",
            extra={"user_id": event.user_id, "notification_id": str(batch.id), "message_count": count},
        )
        return batch

    async def _create(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        metadata: dict[str, Any],
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            kind=str(kind),
            title=title,
            message=message,
            metadata_=metadata,
            is_read=False,
            is_email_sent=False,
        )
        notification = await self._repository.create(session, notification)
        notification_created_total.labels(kind=notification.kind).inc()

        self.logger.info(
            "Created notification",
            extra={"notification_id": str(notification.id), "user_id": user_id, "kind": notification.kind},
        )
        return notification

    def _suppress(self, event: NotificationEvent, reason: str) -> None:
        notification_suppressed_total.labels(kind=str(event.kind), reason=reason).inc()
        self._lazy.debug(lambda: f"gate: dropped {event.kind} for {event.user_id} ({reason})")

    async def _enqueue_email(
        self,
        notification: Notification,
        preference: NotificationPreference,
    ) -> None:
        payload = {"notification_id": str(notification.id), "user_id": notification.user_id}
        dedupe_key = dedupe_key_for(notification.kind, preference.email_address or "", str(notification.id))
        try:
            job = await self.queue.enqueue(payload, name=SEND_EMAIL_JOB, dedupe_key=dedupe_key)
        except Exception:
            self.logger.exception(
                "Failed to enqueue email delivery job",
                extra={"notification_id": str(notification.id)},
            )
            raise
        notification_enqueued_total.labels(source="gate").inc()
        self._lazy.debug(lambda: f"gate: enqueued job {job.id} for notification {notification.id}")

    # ------------------------------------------------------------------
    # Live push
    # ------------------------------------------------------------------

    async def push_created(self, session: AsyncSession, notification: Notification) -> None:
        """Push ``new-notification`` and a fresh ``unread-count`` to the owner.

        Best effort: a failed push is logged and never fails the caller.
        """
        try:
            data = NotificationResponse.model_validate(notification).model_dump(mode="json")
            await self.presence.send_to_user(notification.user_id, {"event": "new-notification", "data": data})
            notification_pushed_total.labels(event="new-notification").inc()

            count = await self._repository.get_unread_count(session, notification.user_id)
            await self.presence.send_to_user(notification.user_id, {"event": "unread-count", "data": {"count": count}})
            notification_pushed_total.labels(event="unread-count").inc()
        except Exception as e:
            self.logger.warning(
                "Failed to push notification to live connections",
                extra={"notification_id": str(notification.id), "error": str(e)},
            )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def list_notifications(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> tuple[Sequence[Notification], int, int]:
        """List a page of notifications.

        Returns:
            Tuple of (notifications, total, unread_count)
        """
        items, total = await self._repository.list_for_user(
            session,
            user_id,
            unread_only=unread_only,
            limit=limit,
            offset=(page - 1) * limit,
        )
        unread = await self._repository.get_unread_count(session, user_id)
        return items, total, unread

    async def get_unread_count(self, session: AsyncSession, user_id: str) -> int:
        return await self._repository.get_unread_count(session, user_id)

    async def mark_as_read(
        self,
        session: AsyncSession,
        notification_id: UUID,
        user_id: str,
        *,
        source: str = "api",
    ) -> Notification:
        """Mark one of the user's notifications as read.

        Raises:
            NotFoundException: If the notification does not exist or belongs to another user.
        """
        notification = await self._repository.get_for_user(session, notification_id, user_id)
        if notification is None:
            raise NotFoundException(
                detail="Notification not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        await self._repository.mark_as_read(session, notification, now=self._clock())
        notification_read_total.labels(source=source).inc()
        return notification

    async def mark_all_as_read(self, session: AsyncSession, user_id: str, *, source: str = "api") -> int:
        updated = await self._repository.mark_all_as_read(session, user_id)
        if updated:
            notification_read_total.labels(source=source).inc(updated)
        self.logger.info("Marked all notifications as read", extra={"user_id": user_id, "updated": updated})
        return updated


_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create the singleton NotificationService instance."""
    global _service
    if _service is None:
        _service = NotificationService()
    return _service
