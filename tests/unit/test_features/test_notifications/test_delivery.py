"""Tests for email delivery attempts and the delivery worker."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from confession_service.core.exceptions import TemplateConfigurationError
from confession_service.core.settings import TemplateRolloutPolicy
from confession_service.features.notifications.delivery import (
    DeliveryOutcome,
    DeliveryWorker,
    EmailDeliveryService,
    build_template_context,
)
from confession_service.features.notifications.models import NotificationKind
from confession_service.features.notifications.templates import (
    TemplateLifecycleState,
    TemplateRegistry,
    TemplateVersion,
    default_template_versions,
)
from confession_service.infra.email import EmailDeliveryError
from confession_service.infra.queue import InMemoryDeliveryQueue, JobState, RetryPolicy
from tests.utils import make_notification, make_preference, utc

NOW = utc(2026, 3, 1, 12, 0)


@pytest.fixture
def registry() -> TemplateRegistry:
    return TemplateRegistry(templates=default_template_versions())


@pytest.fixture
def delivery(registry, email_client) -> EmailDeliveryService:
    return EmailDeliveryService(
        registry=registry,
        email_client=email_client,
        app_url="https://xconfess.app/",
        clock=lambda: NOW,
    )


def _payload(notification) -> dict[str, str]:
    return {"notification_id": str(notification.id), "user_id": notification.user_id}


# ──────────────────────────────────────────────────────────────
# Template context
# ──────────────────────────────────────────────────────────────


class TestTemplateContext:
    @pytest.mark.asyncio
    async def test_batch_context(self, db_session):
        notification = await make_notification(
            db_session,
            kind=NotificationKind.MESSAGE_BATCH,
            title="4 New Messages",
            metadata={"message_ids": ["a", "b", "c", "d"], "message_count": 4},
        )

        context = build_template_context(notification, "https://xconfess.app/", NOW)

        assert context["count_label"] == "4"
        assert context["message_count"] == 4
        assert context["app_url"] == "https://xconfess.app"
        assert context["year"] == 2026

    @pytest.mark.asyncio
    async def test_batch_context_without_count(self, db_session):
        notification = await make_notification(db_session, kind=NotificationKind.MESSAGE_BATCH, metadata={})

        context = build_template_context(notification, "https://xconfess.app", NOW)

        assert context["count_label"] == "Multiple"


# ──────────────────────────────────────────────────────────────
# EmailDeliveryService
# ──────────────────────────────────────────────────────────────


class TestEmailDeliveryService:
    @pytest.mark.asyncio
    async def test_sends_and_marks_notification(self, db_session, delivery, email_client):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session, message="secret crush")

        outcome = await delivery.deliver(db_session, _payload(notification))

        assert outcome == DeliveryOutcome.SENT
        assert notification.is_email_sent is True
        assert notification.email_sent_at == NOW

        [message] = email_client.sent
        assert message.to == ["a@example.com"]
        assert message.subject == "New Message on xConfess"
        assert "secret crush" in message.body_text
        assert "https://xconfess.app/messages" in message.body_text
        assert message.headers["X-Notification-Id"] == str(notification.id)
        assert message.metadata["template_version"] == "v1"
        assert message.metadata["is_canary"] is False

    @pytest.mark.asyncio
    async def test_already_sent_is_noop(self, db_session, delivery, email_client):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session, is_email_sent=True)

        outcome = await delivery.deliver(db_session, _payload(notification))

        assert outcome == DeliveryOutcome.ALREADY_SENT
        assert email_client.sent == []

    @pytest.mark.asyncio
    async def test_second_delivery_does_not_resend(self, db_session, delivery, email_client):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)

        assert await delivery.deliver(db_session, _payload(notification)) == DeliveryOutcome.SENT
        assert await delivery.deliver(db_session, _payload(notification)) == DeliveryOutcome.ALREADY_SENT
        assert len(email_client.sent) == 1

    @pytest.mark.asyncio
    async def test_missing_notification_is_dropped(self, db_session, delivery):
        outcome = await delivery.deliver(db_session, {"notification_id": str(uuid4()), "user_id": "user-1"})
        assert outcome == DeliveryOutcome.DROPPED

    @pytest.mark.asyncio
    async def test_malformed_notification_id_is_dropped(self, db_session, delivery):
        outcome = await delivery.deliver(db_session, {"notification_id": "not-a-uuid"})
        assert outcome == DeliveryOutcome.DROPPED

    @pytest.mark.asyncio
    async def test_email_disabled_is_dropped(self, db_session, delivery, email_client):
        await make_preference(
            db_session,
            "user-1",
            email_address="a@example.com",
            enable_email_notifications=False,
        )
        notification = await make_notification(db_session)

        outcome = await delivery.deliver(db_session, _payload(notification))

        assert outcome == DeliveryOutcome.DROPPED
        assert notification.is_email_sent is False
        assert email_client.sent == []

    @pytest.mark.asyncio
    async def test_no_address_is_dropped(self, db_session, delivery):
        await make_preference(db_session, "user-1")
        notification = await make_notification(db_session)

        assert await delivery.deliver(db_session, _payload(notification)) == DeliveryOutcome.DROPPED

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self, db_session, delivery, email_client):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)
        email_client.fail_with = "SMTP 451"

        with pytest.raises(EmailDeliveryError, match="SMTP 451"):
            await delivery.deliver(db_session, _payload(notification))

        assert notification.is_email_sent is False

    @pytest.mark.asyncio
    async def test_missing_template_version_raises(self, db_session, email_client):
        registry = TemplateRegistry(
            templates=default_template_versions(),
            policies={"new_message": TemplateRolloutPolicy(active_version="v9")},
        )
        delivery = EmailDeliveryService(registry=registry, email_client=email_client, app_url="https://x.app")
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)

        with pytest.raises(TemplateConfigurationError):
            await delivery.deliver(db_session, _payload(notification))

    @pytest.mark.asyncio
    async def test_full_canary_serves_new_version(self, db_session, registry, email_client):
        registry.register(
            "new_message",
            TemplateVersion(
                version="v2",
                subject="You've got mail",
                html="<p>{{ message }}</p>",
                text="{{ message }}",
                required_vars=("message",),
                state=TemplateLifecycleState.DRAFT,
            ),
        )
        registry.start_canary("new_message", "v2", 100)
        delivery = EmailDeliveryService(registry=registry, email_client=email_client, app_url="https://x.app")
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)

        await delivery.deliver(db_session, _payload(notification))

        assert email_client.sent[0].subject == "You've got mail"
        assert email_client.sent[0].metadata["template_version"] == "v2"

    @pytest.mark.asyncio
    async def test_resolve_recipient(self, db_session, delivery):
        await make_preference(db_session, "user-1", email_address="a@example.com")

        assert await delivery.resolve_recipient(db_session, {"user_id": "user-1"}) == "a@example.com"
        assert await delivery.resolve_recipient(db_session, {"user_id": "nobody"}) is None
        assert await delivery.resolve_recipient(db_session, {}) is None


# ──────────────────────────────────────────────────────────────
# DeliveryWorker
# ──────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class TestDeliveryWorker:
    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def memory_queue(self, clock) -> InMemoryDeliveryQueue:
        return InMemoryDeliveryQueue(RetryPolicy(max_attempts=3, base_delay_ms=2000), clock=clock)

    @pytest.fixture
    def worker(self, memory_queue, delivery, session_factory) -> DeliveryWorker:
        return DeliveryWorker(memory_queue, delivery, session_factory, concurrency=1, poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_successful_job_is_acked(self, db_session, memory_queue, worker, email_client):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)
        job = await memory_queue.enqueue(_payload(notification))

        processed = await worker.drain()

        assert processed == 1
        assert (await memory_queue.get_job(job.id)).state == JobState.COMPLETED
        assert len(email_client.sent) == 1

    @pytest.mark.asyncio
    async def test_dropped_job_is_acked(self, db_session, memory_queue, worker):
        job = await memory_queue.enqueue({"notification_id": str(uuid4()), "user_id": "user-1"})

        await worker.drain()

        assert (await memory_queue.get_job(job.id)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_with_backoff(self, db_session, memory_queue, worker, email_client):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)
        job = await memory_queue.enqueue(_payload(notification))
        email_client.fail_with = "connection reset"

        await worker.drain()

        retried = await memory_queue.get_job(job.id)
        assert retried.state == JobState.DELAYED
        assert retried.attempts_made == 1
        assert retried.available_at == NOW + timedelta(seconds=2)
        assert retried.last_error == "connection reset"
        # not ready until the backoff elapses
        assert await worker.drain() == 0

    @pytest.mark.asyncio
    async def test_exhausted_job_is_dead_lettered_with_recipient(
        self, db_session, memory_queue, worker, email_client, clock
    ):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)
        job = await memory_queue.enqueue(_payload(notification))
        email_client.fail_with = "mailbox unavailable"

        for delay in (0, 2, 4):
            clock.advance(delay)
            assert await worker.drain() == 1

        entry = await memory_queue.get_dead_letter(job.id)
        assert entry is not None
        assert entry.attempts_made == 3
        assert entry.failed_reason == "mailbox unavailable"
        assert entry.recipient == "a@example.com"
        assert entry.payload == _payload(notification)
        assert (await memory_queue.stats()).dead_lettered == 1

    @pytest.mark.asyncio
    async def test_recovery_after_transient_failure(self, db_session, memory_queue, worker, email_client, clock):
        await make_preference(db_session, "user-1", email_address="a@example.com")
        notification = await make_notification(db_session)
        job = await memory_queue.enqueue(_payload(notification))

        email_client.fail_with = "temporary"
        await worker.drain()
        email_client.fail_with = None
        clock.advance(2)
        await worker.drain()

        assert (await memory_queue.get_job(job.id)).state == JobState.COMPLETED
        assert notification.is_email_sent is True

    @pytest.mark.asyncio
    async def test_drain_respects_max_jobs(self, memory_queue, worker):
        for _ in range(3):
            await memory_queue.enqueue({"notification_id": str(uuid4()), "user_id": "user-1"})

        assert await worker.drain(max_jobs=2) == 2
        assert (await memory_queue.stats()).pending == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, memory_queue, worker):
        await worker.start()
        assert worker.is_running is True

        await worker.stop()
        assert worker.is_running is False
