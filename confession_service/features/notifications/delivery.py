"""Email delivery worker.

One attempt of a ``send-email`` job:

- notification missing: logged and dropped (acked, not retried)
- ``is_email_sent`` already true: no-op success
- email disabled for the user or no address: dropped
- otherwise resolve the template version for the recipient, render and send;
  on success the notification's email fields are set

Any exception propagates to the queue's retry policy, and the job is
dead-lettered once its attempt budget is spent. The sent-flag check is a
read-then-write, so delivery is at-least-once: two workers holding
duplicate jobs for one notification can both send.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
import logging
import time
from typing import TYPE_CHECKING, Any
from uuid import UUID

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from confession_service.core.services.base import BaseService
from confession_service.core.settings import get_app_settings, get_notification_settings
from confession_service.features.notifications.canary import CanaryResolution, lookup, resolve_version
from confession_service.features.notifications.metrics import (
    notification_dead_lettered_total,
    notification_delivery_attempts_total,
    notification_delivery_duration_seconds,
)
from confession_service.features.notifications.repository import (
    NotificationPreferenceRepository,
    NotificationRepository,
    get_notification_preference_repository,
    get_notification_repository,
)
from confession_service.features.notifications.templates import (
    TemplateRegistry,
    TemplateRenderer,
    get_template_registry,
    get_template_renderer,
)
from confession_service.infra.database import get_async_session
from confession_service.infra.email import (
    EmailClient,
    EmailDeliveryError,
    EmailMessage,
    get_email_client,
)
from confession_service.infra.logging import clear_log_context, set_log_context
from confession_service.infra.queue import DeadLetterEntry, DeliveryJob, DeliveryQueue, get_delivery_queue

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from confession_service.features.notifications.models import Notification

    SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DeliveryOutcome(StrEnum):
    SENT = "sent"
    ALREADY_SENT = "already_sent"
    DROPPED = "dropped"


@dataclass(frozen=True, slots=True)
class PreparedEmail:
    message: EmailMessage
    template_key: str
    resolution: CanaryResolution


def build_template_context(notification: Notification, app_url: str, now: datetime) -> dict[str, Any]:
    """Variables available to every email template."""
    metadata = notification.metadata_ or {}
    count = metadata.get("message_count")
    return {
        "title": notification.title,
        "message": notification.message,
        "message_count": count,
        "count_label": str(count) if count else "Multiple",
        "app_url": app_url.rstrip("/"),
        "year": now.year,
    }


class EmailDeliveryService(BaseService):
    """Performs a single delivery attempt for a ``send-email`` payload."""

    def __init__(
        self,
        repository: NotificationRepository | None = None,
        preference_repository: NotificationPreferenceRepository | None = None,
        registry: TemplateRegistry | None = None,
        renderer: TemplateRenderer | None = None,
        email_client: EmailClient | None = None,
        app_url: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_notification_repository()
        self._preference_repository = preference_repository or get_notification_preference_repository()
        self._registry = registry
        self._renderer = renderer or get_template_renderer()
        self._email_client = email_client
        self._app_url = app_url
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry or get_template_registry()

    @property
    def email_client(self) -> EmailClient:
        return self._email_client or get_email_client()

    @property
    def app_url(self) -> str:
        return self._app_url or get_app_settings().app_url

    def prepare(self, notification: Notification, recipient: str) -> PreparedEmail:
        """Resolve the template version for the recipient and render the email.

        Raises:
            TemplateConfigurationError: If the template key or version is missing,
                or a required variable has no value.
        """
        template_key = notification.kind
        resolution = resolve_version(template_key, recipient, self.registry.policy_for(template_key))
        template = lookup(self.registry, template_key, resolution.version)
        rendered = self._renderer.render(
            template_key,
            template,
            build_template_context(notification, self.app_url, self._clock()),
        )
        message = EmailMessage(
            to=[recipient],
            subject=rendered.subject,
            body_text=rendered.text,
            body_html=rendered.html,
            headers={"X-Notification-Id": str(notification.id)},
            metadata={
                "notification_id": str(notification.id),
                "template_key": template_key,
                "template_version": resolution.version,
                "is_canary": resolution.is_canary,
            },
        )
        return PreparedEmail(message=message, template_key=template_key, resolution=resolution)

    async def deliver(self, session: AsyncSession, payload: dict[str, Any]) -> DeliveryOutcome:
        """Run one delivery attempt.

        Raises:
            EmailDeliveryError: If the transport reports a failure.
            TemplateConfigurationError: If the template cannot be resolved or rendered.
        """
        notification = await self._load_notification(session, payload.get("notification_id"))
        if notification is None:
            self.logger.warning(
                "Notification not found for delivery job, dropping",
                extra={"notification_id": payload.get("notification_id")},
            )
            return DeliveryOutcome.DROPPED

        if notification.is_email_sent:
            self._lazy.debug(lambda: f"deliver: {notification.id} already sent")
            return DeliveryOutcome.ALREADY_SENT

        preference = await self._preference_repository.get_for_user(session, notification.user_id)
        if preference is None or not preference.enable_email_notifications or not preference.email_address:
            self.logger.info(
                "Email disabled or no address for user, dropping delivery",
                extra={"notification_id": str(notification.id), "user_id": notification.user_id},
            )
            return DeliveryOutcome.DROPPED

        prepared = self.prepare(notification, preference.email_address)
        result = await self.email_client.send(prepared.message)
        if not result.success:
            raise EmailDeliveryError.from_result(result)

        notification.is_email_sent = True
        notification.email_sent_at = self._clock()
        await session.flush()

        self.logger.info(
            "Notification email sent",
            extra={
                "notification_id": str(notification.id),
                "message_id": result.message_id,
                "template_key": prepared.template_key,
                "template_version": prepared.resolution.version,
                "is_canary": prepared.resolution.is_canary,
            },
        )
        return DeliveryOutcome.SENT

    async def resolve_recipient(self, session: AsyncSession, payload: dict[str, Any]) -> str | None:
        """Current email address of the job's user, for dead-letter records."""
        user_id = payload.get("user_id")
        if not user_id:
            return None
        preference = await self._preference_repository.get_for_user(session, user_id)
        return preference.email_address if preference else None

    async def _load_notification(self, session: AsyncSession, notification_id: Any) -> Notification | None:
        try:
            key = UUID(str(notification_id))
        except ValueError:
            return None
        return await self._repository.get(session, key)


class DeliveryWorker:
    """Leases delivery jobs and runs them with bounded concurrency.

    Example:
        worker = DeliveryWorker()
        await worker.start()
        ...
        await worker.stop()

        # or, synchronously in tests and on-demand tasks
        processed = await worker.drain()
    """

    def __init__(
        self,
        queue: DeliveryQueue | None = None,
        service: EmailDeliveryService | None = None,
        session_factory: SessionFactory | None = None,
        *,
        concurrency: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        settings = get_notification_settings()
        self._queue = queue
        self._service = service or EmailDeliveryService()
        self._session_factory = session_factory or get_async_session
        self._concurrency = concurrency or settings.worker_concurrency
        self._poll_interval = poll_interval or settings.worker_poll_interval
        self._recovery_interval = settings.lease_timeout_seconds / 2
        self._last_recovery = float("-inf")
        self._semaphore = asyncio.Semaphore(self._concurrency)
        self._in_flight: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue or get_delivery_queue()

    @property
    def is_running(self) -> bool:
        return self._running

    async def process_job(self, job: DeliveryJob) -> None:
        """Run one attempt of a leased job, then ack it or hand it to the retry policy."""
        attempt = job.attempts_made + 1
        start = time.perf_counter()
        set_log_context(job_id=job.id, notification_id=job.notification_id)

        with tracer.start_as_current_span("notification.deliver") as span:
            span.set_attribute("job.id", job.id)
            span.set_attribute("job.attempt", attempt)
            span.set_attribute("notification.id", job.notification_id or "")

            try:
                async with self._session_factory() as session:
                    outcome = await self._service.deliver(session, job.payload)
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                notification_delivery_attempts_total.labels(outcome="failed").inc()
                await self._fail(job, exc)
            else:
                span.set_attribute("delivery.outcome", outcome.value)
                notification_delivery_attempts_total.labels(outcome=outcome.value).inc()
                await self.queue.ack(job)
            finally:
                notification_delivery_duration_seconds.observe(time.perf_counter() - start)
                clear_log_context()

    async def _fail(self, job: DeliveryJob, exc: Exception) -> None:
        error = str(exc) or type(exc).__name__
        recipient = None
        if self.queue.policy.is_exhausted(job.attempts_made + 1, job.max_attempts):
            recipient = await self._resolve_recipient(job)

        result = await self.queue.fail(job, error, recipient=recipient)
        if isinstance(result, DeadLetterEntry):
            notification_dead_lettered_total.inc()

    async def _resolve_recipient(self, job: DeliveryJob) -> str | None:
        try:
            async with self._session_factory() as session:
                return await self._service.resolve_recipient(session, job.payload)
        except Exception as e:
            logger.warning(
                "Could not resolve recipient for dead-lettered job",
                extra={"job_id": job.id, "error": str(e)},
            )
            return None

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process ready jobs one at a time until none are ready.

        Returns:
            Number of attempts made
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = await self.queue.lease()
            if job is None:
                break
            await self.process_job(job)
            processed += 1
        return processed

    async def start(self) -> None:
        """Start the polling loop in the background."""
        if self._running:
            return
        self._running = True
        await self._maybe_recover_stalled()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Delivery worker started",
            extra={"concurrency": self._concurrency, "poll_interval": self._poll_interval},
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop leasing and wait for in-flight attempts to finish."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        if self._in_flight:
            _, pending = await asyncio.wait(self._in_flight, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Cancelled in-flight delivery attempts on shutdown", extra={"count": len(pending)})
        logger.info("Delivery worker stopped")

    async def _run(self) -> None:
        while self._running:
            await self._semaphore.acquire()
            try:
                job = await self.queue.lease()
            except Exception as e:
                self._semaphore.release()
                logger.error("Failed to lease delivery job", extra={"error": str(e)})
                await asyncio.sleep(self._poll_interval)
                continue

            if job is None:
                self._semaphore.release()
                await self._maybe_recover_stalled()
                await asyncio.sleep(self._poll_interval)
                continue

            task = asyncio.create_task(self._run_one(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _maybe_recover_stalled(self) -> None:
        now = time.monotonic()
        if now - self._last_recovery < self._recovery_interval:
            return
        self._last_recovery = now
        recovered = await self.queue.recover_stalled()
        if recovered:
            logger.warning("Recovered stalled delivery jobs", extra={"count": recovered})

    async def _run_one(self, job: DeliveryJob) -> None:
        try:
            await self.process_job(job)
        except Exception:
            logger.exception("Delivery worker failed to record job outcome", extra={"job_id": job.id})
        finally:
            self._semaphore.release()


_worker: DeliveryWorker | None = None


def get_delivery_worker() -> DeliveryWorker:
    """Get the DeliveryWorker singleton instance."""
    global _worker
    if _worker is None:
        _worker = DeliveryWorker()
    return _worker


async def start_delivery_worker() -> DeliveryWorker:
    worker = get_delivery_worker()
    await worker.start()
    return worker


async def stop_delivery_worker() -> None:
    global _worker
    if _worker is not None:
        await _worker.stop()
        _worker = None
