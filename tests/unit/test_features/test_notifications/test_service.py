"""Tests for the notification gate, batch aggregation and read state."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from confession_service.core.exceptions import NotFoundException
from confession_service.features.notifications.models import NotificationKind
from confession_service.features.notifications.preferences import PreferenceDefaults, PreferenceService
from confession_service.features.notifications.schemas import NotificationEvent
from confession_service.features.notifications.service import (
    NotificationService,
    email_enabled,
    in_app_enabled,
)
from confession_service.infra.queue import SEND_EMAIL_JOB, InMemoryDeliveryQueue
from tests.utils import make_notification, make_preference, utc


def _message(message_id: str, user_id: str = "user-1", text: str = "hey") -> NotificationEvent:
    return NotificationEvent(
        kind=NotificationKind.NEW_MESSAGE,
        user_id=user_id,
        sender_id="sender-1",
        message_id=message_id,
        preview_text=text,
    )


@pytest.fixture
def presence() -> MagicMock:
    manager = MagicMock()
    manager.send_to_user = AsyncMock(return_value=1)
    return manager


@pytest.fixture
def memory_queue() -> InMemoryDeliveryQueue:
    return InMemoryDeliveryQueue()


@pytest.fixture
def service(memory_queue, presence) -> NotificationService:
    return NotificationService(
        preference_service=PreferenceService(defaults=PreferenceDefaults()),
        queue=memory_queue,
        presence=presence,
    )


# ──────────────────────────────────────────────────────────────
# Toggles
# ──────────────────────────────────────────────────────────────


class TestToggles:
    def test_in_app_enabled_per_kind(self):
        from confession_service.features.notifications.models import NotificationPreference

        preference = NotificationPreference(
            enable_in_app_notifications=True,
            in_app_new_message=False,
            in_app_message_batch=True,
        )

        assert in_app_enabled(preference, NotificationKind.NEW_MESSAGE) is False
        assert in_app_enabled(preference, NotificationKind.MESSAGE_BATCH) is True
        assert in_app_enabled(preference, NotificationKind.SYSTEM) is True

        preference.enable_in_app_notifications = False
        assert in_app_enabled(preference, NotificationKind.SYSTEM) is False

    def test_email_requires_address_and_toggles(self):
        from confession_service.features.notifications.models import NotificationPreference

        preference = NotificationPreference(
            enable_email_notifications=True,
            email_new_message=True,
            email_message_batch=False,
            email_address=None,
        )
        assert email_enabled(preference, NotificationKind.NEW_MESSAGE) is False

        preference.email_address = "a@example.com"
        assert email_enabled(preference, NotificationKind.NEW_MESSAGE) is True
        assert email_enabled(preference, NotificationKind.MESSAGE_BATCH) is False
        assert email_enabled(preference, NotificationKind.SYSTEM) is False


# ──────────────────────────────────────────────────────────────
# Gate
# ──────────────────────────────────────────────────────────────


class TestProcessEvent:
    @pytest.mark.asyncio
    async def test_creates_individual_notification(self, db_session, service, presence):
        notification = await service.process_event(db_session, _message("m1", text="hello"))

        assert notification is not None
        assert notification.kind == NotificationKind.NEW_MESSAGE
        assert notification.title == "New Message"
        assert notification.message == "hello"
        assert notification.metadata_ == {"message_id": "m1", "sender_id": "sender-1"}
        assert notification.is_read is False

        events = [call.args[1]["event"] for call in presence.send_to_user.await_args_list]
        assert events == ["new-notification", "unread-count"]
        assert presence.send_to_user.await_args_list[1].args[1]["data"] == {"count": 1}

    @pytest.mark.asyncio
    async def test_in_app_disabled_drops_event(self, db_session, service, presence):
        await make_preference(db_session, "user-1", enable_in_app_notifications=False)

        assert await service.process_event(db_session, _message("m1")) is None
        presence.send_to_user.assert_not_awaited()
        assert await service.get_unread_count(db_session, "user-1") == 0

    @pytest.mark.asyncio
    async def test_kind_disabled_drops_event(self, db_session, service):
        await make_preference(db_session, "user-1", in_app_new_message=False)

        assert await service.process_event(db_session, _message("m1")) is None

    @pytest.mark.asyncio
    async def test_quiet_hours_drop_event(self, db_session, memory_queue, presence):
        await make_preference(
            db_session,
            "user-1",
            enable_quiet_hours=True,
            quiet_hours_start="22:00:00",
            quiet_hours_end="07:00:00",
            email_address="a@example.com",
        )
        service = NotificationService(
            preference_service=PreferenceService(defaults=PreferenceDefaults()),
            queue=memory_queue,
            presence=presence,
            clock=lambda: utc(2026, 1, 1, 23, 30),
        )

        assert await service.process_event(db_session, _message("m1")) is None
        assert (await memory_queue.stats()).pending == 0

    @pytest.mark.asyncio
    async def test_system_notification(self, db_session, service, memory_queue):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        event = NotificationEvent(
            kind=NotificationKind.SYSTEM,
            user_id="user-1",
            title="Maintenance",
            preview_text="Down at noon",
        )

        notification = await service.process_event(db_session, event)

        assert notification.title == "Maintenance"
        assert notification.message == "Down at noon"
        # system notifications are never emailed
        assert (await memory_queue.stats()).pending == 0

    @pytest.mark.asyncio
    async def test_system_notification_default_title(self, db_session, service):
        event = NotificationEvent(kind=NotificationKind.SYSTEM, user_id="user-1", preview_text="hi")

        notification = await service.process_event(db_session, event)

        assert notification.title == "xConfess"

    @pytest.mark.asyncio
    async def test_enqueues_email_job(self, db_session, service, memory_queue):
        await make_preference(db_session, "user-1", email_address="a@example.com")

        notification = await service.process_event(db_session, _message("m1"))

        stats = await memory_queue.stats()
        assert stats.pending == 1
        job = await memory_queue.lease()
        assert job.name == SEND_EMAIL_JOB
        assert job.payload == {"notification_id": str(notification.id), "user_id": "user-1"}
        assert job.dedupe_key.startswith("notif:dedupe:")

    @pytest.mark.asyncio
    async def test_no_email_without_address(self, db_session, service, memory_queue):
        await service.process_event(db_session, _message("m1"))
        assert (await memory_queue.stats()).pending == 0

    @pytest.mark.asyncio
    async def test_enqueue_failure_propagates_after_commit(self, db_session, presence):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        broken_queue = MagicMock()
        broken_queue.enqueue = AsyncMock(side_effect=RuntimeError("redis down"))
        service = NotificationService(
            preference_service=PreferenceService(defaults=PreferenceDefaults()),
            queue=broken_queue,
            presence=presence,
        )

        with pytest.raises(RuntimeError, match="redis down"):
            await service.process_event(db_session, _message("m1"))

        assert await service.get_unread_count(db_session, "user-1") == 1

    @pytest.mark.asyncio
    async def test_push_failure_does_not_fail_event(self, db_session, service, presence):
        presence.send_to_user.side_effect = RuntimeError("socket gone")

        notification = await service.process_event(db_session, _message("m1"))

        assert notification is not None

    def test_event_validation(self):
        with pytest.raises(ValueError):
            NotificationEvent(kind=NotificationKind.NEW_MESSAGE, user_id="user-1")
        with pytest.raises(ValueError):
            NotificationEvent(kind=NotificationKind.MESSAGE_BATCH, user_id="user-1", message_id="m1")


# ──────────────────────────────────────────────────────────────
# Batching
# ──────────────────────────────────────────────────────────────


class TestBatching:
    @pytest.mark.asyncio
    async def test_third_message_collapses_into_batch(self, db_session, service):
        first = await service.process_event(db_session, _message("m1"))
        second = await service.process_event(db_session, _message("m2"))

        batch = await service.process_event(db_session, _message("m3"))

        assert batch.kind == NotificationKind.MESSAGE_BATCH
        assert batch.title == "3 New Messages"
        assert batch.metadata_["message_count"] == 3
        assert sorted(batch.metadata_["message_ids"]) == ["m1", "m2", "m3"]
        assert first.is_read is True
        assert second.is_read is True
        assert await service.get_unread_count(db_session, "user-1") == 1

    @pytest.mark.asyncio
    async def test_below_threshold_stays_individual(self, db_session, service):
        await make_preference(db_session, "user-1", batch_threshold=4)

        for message_id in ("m1", "m2", "m3"):
            notification = await service.process_event(db_session, _message(message_id))
            assert notification.kind == NotificationKind.NEW_MESSAGE

        assert await service.get_unread_count(db_session, "user-1") == 3

    @pytest.mark.asyncio
    async def test_priors_outside_window_are_ignored(self, db_session, service):
        old = datetime.now(UTC) - timedelta(minutes=30)
        await make_notification(db_session, metadata={"message_id": "old-1"}, created_at=old)
        await make_notification(db_session, metadata={"message_id": "old-2"}, created_at=old)

        notification = await service.process_event(db_session, _message("m1"))

        assert notification.kind == NotificationKind.NEW_MESSAGE

    @pytest.mark.asyncio
    async def test_read_priors_are_ignored(self, db_session, service):
        await make_notification(db_session, metadata={"message_id": "r1"}, is_read=True)
        await make_notification(db_session, metadata={"message_id": "r2"}, is_read=True)

        notification = await service.process_event(db_session, _message("m1"))

        assert notification.kind == NotificationKind.NEW_MESSAGE

    @pytest.mark.asyncio
    async def test_other_users_priors_are_ignored(self, db_session, service):
        await make_notification(db_session, user_id="user-2", metadata={"message_id": "x1"})
        await make_notification(db_session, user_id="user-2", metadata={"message_id": "x2"})

        notification = await service.process_event(db_session, _message("m1"))

        assert notification.kind == NotificationKind.NEW_MESSAGE

    @pytest.mark.asyncio
    async def test_batch_disabled_keeps_individual(self, db_session, service):
        await make_preference(db_session, "user-1", in_app_message_batch=False)

        for message_id in ("m1", "m2", "m3"):
            notification = await service.process_event(db_session, _message(message_id))

        assert notification.kind == NotificationKind.NEW_MESSAGE
        assert await service.get_unread_count(db_session, "user-1") == 3

    @pytest.mark.asyncio
    async def test_batch_email_enqueued(self, db_session, service, memory_queue):
        await make_preference(db_session, "user-1", email_address="a@example.com", email_new_message=False)

        for message_id in ("m1", "m2", "m3"):
            batch = await service.process_event(db_session, _message(message_id))

        assert (await memory_queue.stats()).pending == 1
        job = await memory_queue.lease()
        assert job.notification_id == str(batch.id)


# ──────────────────────────────────────────────────────────────
# Read path
# ──────────────────────────────────────────────────────────────


class TestReadState:
    @pytest.mark.asyncio
    async def test_list_notifications_paginates(self, db_session, service):
        for i in range(5):
            await make_notification(db_session, kind=NotificationKind.SYSTEM, message=f"n{i}")
        await make_notification(db_session, kind=NotificationKind.SYSTEM, is_read=True)

        items, total, unread = await service.list_notifications(db_session, "user-1", page=1, limit=4)
        assert len(items) == 4
        assert total == 6
        assert unread == 5

        items, total, _ = await service.list_notifications(db_session, "user-1", page=2, limit=4)
        assert len(items) == 2

        items, total, _ = await service.list_notifications(db_session, "user-1", unread_only=True)
        assert total == 5
        assert all(not n.is_read for n in items)

    @pytest.mark.asyncio
    async def test_mark_as_read(self, db_session, service):
        notification = await make_notification(db_session)

        updated = await service.mark_as_read(db_session, notification.id, "user-1")

        assert updated.is_read is True
        assert updated.read_at is not None

    @pytest.mark.asyncio
    async def test_mark_as_read_is_idempotent(self, db_session, service):
        notification = await make_notification(db_session)
        first = await service.mark_as_read(db_session, notification.id, "user-1")
        read_at = first.read_at

        second = await service.mark_as_read(db_session, notification.id, "user-1")

        assert second.read_at == read_at

    @pytest.mark.asyncio
    async def test_mark_as_read_other_user_not_found(self, db_session, service):
        notification = await make_notification(db_session, user_id="user-2")

        with pytest.raises(NotFoundException) as exc_info:
            await service.mark_as_read(db_session, notification.id, "user-1")

        assert exc_info.value.type == "notification-not-found"

    @pytest.mark.asyncio
    async def test_mark_as_read_unknown_id(self, db_session, service):
        with pytest.raises(NotFoundException):
            await service.mark_as_read(db_session, uuid4(), "user-1")

    @pytest.mark.asyncio
    async def test_mark_all_as_read(self, db_session, service):
        for _ in range(3):
            await make_notification(db_session)
        await make_notification(db_session, user_id="user-2")

        updated = await service.mark_all_as_read(db_session, "user-1")

        assert updated == 3
        assert await service.get_unread_count(db_session, "user-1") == 0
        assert await service.get_unread_count(db_session, "user-2") == 1
