"""Dead-letter store administration: listing, inspection and replay.

Dead-letter entries are never modified. A replay enqueues a new job with the
original payload and a fresh attempt counter, bypassing enqueue
deduplication, and records an audit entry next to the dead-letter record.
Concurrent replays of one entry produce independent jobs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from confession_service.core.exceptions import NotFoundException, ValidationException
from confession_service.core.services.base import BaseService
from confession_service.features.notifications.metrics import (
    notification_enqueued_total,
    notification_queue_jobs,
    notification_replayed_total,
)
from confession_service.infra.queue import (
    DeadLetterEntry,
    DeadLetterFilter,
    DeliveryQueue,
    QueueStats,
    ReplayAuditEntry,
    get_delivery_queue,
)


@dataclass(frozen=True, slots=True)
class ReplayResult:
    success: bool
    message: str
    job_id: str


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def build_filter(
    *,
    failed_after: datetime | None = None,
    failed_before: datetime | None = None,
    min_attempts: int | None = None,
    search: str | None = None,
) -> DeadLetterFilter:
    """Build a dead-letter filter; naive datetimes are taken as UTC.

    Raises:
        ValidationException: If the time range is empty.
    """
    failed_after = _as_utc(failed_after)
    failed_before = _as_utc(failed_before)
    if failed_after and failed_before and failed_after >= failed_before:
        raise ValidationException(
            detail="failedAfter must be earlier than failedBefore",
            extra={"failed_after": failed_after.isoformat(), "failed_before": failed_before.isoformat()},
        )
    return DeadLetterFilter(
        failed_after=failed_after,
        failed_before=failed_before,
        min_attempts=min_attempts,
        search=search.strip() if search and search.strip() else None,
    )


class DeadLetterService(BaseService):
    """Operator operations over the delivery queue's dead-letter store."""

    def __init__(self, queue: DeliveryQueue | None = None) -> None:
        super().__init__()
        self._queue = queue

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue or get_delivery_queue()

    async def list_failed(
        self,
        filters: DeadLetterFilter | None = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[DeadLetterEntry], int]:
        """A page of dead-lettered jobs, newest failure first, with the total match count."""
        if page < 1 or limit < 1:
            raise ValidationException(detail="page and limit must be positive", extra={"page": page, "limit": limit})
        return await self.queue.list_dead_letters(filters, offset=(page - 1) * limit, limit=limit)

    async def get(self, job_id: str) -> DeadLetterEntry:
        """Get a dead-lettered job.

        Raises:
            NotFoundException: If no dead-letter entry has this id.
        """
        entry = await self.queue.get_dead_letter(job_id)
        if entry is None:
            raise NotFoundException(
                detail=f"Dead-letter job {job_id} not found",
                type="dead-letter-job-not-found",
                extra={"job_id": job_id},
            )
        return entry

    async def list_replays(self, job_id: str) -> list[ReplayAuditEntry]:
        return await self.queue.list_replays(job_id)

    async def replay(
        self,
        job_id: str,
        reason: str | None = None,
        *,
        actor_id: str | None = None,
        mode: str = "single",
    ) -> ReplayResult:
        """Enqueue a fresh job for a dead-lettered one.

        Raises:
            NotFoundException: If no dead-letter entry has this id.
        """
        entry = await self.get(job_id)
        job = await self.queue.enqueue(dict(entry.payload), name=entry.name, replay_of=entry.job_id)
        await self.queue.record_replay(
            ReplayAuditEntry(
                dead_letter_job_id=entry.job_id,
                new_job_id=job.id,
                replayed_at=datetime.now(UTC),
                reason=reason,
                actor_id=actor_id,
            ),
        )

        notification_replayed_total.labels(mode=mode).inc()
        notification_enqueued_total.labels(source="replay").inc()
        self.logger.info(
            "Dead-letter job replayed",
            extra={"job_id": entry.job_id, "new_job_id": job.id, "actor_id": actor_id, "reason": reason},
        )
        return ReplayResult(success=True, message=f"Job {entry.job_id} re-enqueued", job_id=job.id)

    async def bulk_replay(
        self,
        filters: DeadLetterFilter | None = None,
        *,
        limit: int = 50,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> tuple[list[str], list[str]]:
        """Replay up to ``limit`` matching dead-letter jobs.

        Returns:
            Tuple of (new job ids, dead-letter ids that could not be replayed)
        """
        entries, _ = await self.queue.list_dead_letters(filters, offset=0, limit=limit)
        new_ids: list[str] = []
        failed: list[str] = []
        for entry in entries:
            try:
                result = await self.replay(entry.job_id, reason, actor_id=actor_id, mode="bulk")
            except NotFoundException:
                # Removed by another operator since it was listed.
                failed.append(entry.job_id)
                continue
            new_ids.append(result.job_id)

        self.logger.info(
            "Bulk dead-letter replay finished",
            extra={"replayed": len(new_ids), "skipped": len(failed), "actor_id": actor_id},
        )
        return new_ids, failed

    async def delete(self, job_id: str, *, actor_id: str | None = None) -> None:
        """Remove a dead-lettered job permanently.

        Raises:
            NotFoundException: If no dead-letter entry has this id.
        """
        if not await self.queue.remove_dead_letter(job_id):
            raise NotFoundException(
                detail=f"Dead-letter job {job_id} not found",
                type="dead-letter-job-not-found",
                extra={"job_id": job_id},
            )
        self.logger.info("Dead-letter job deleted", extra={"job_id": job_id, "actor_id": actor_id})

    async def stats(self) -> QueueStats:
        """Queue counts by state, also published as the notification_queue_jobs gauge."""
        stats = await self.queue.stats()
        for state, count in asdict(stats).items():
            notification_queue_jobs.labels(state=state).set(count)
        return stats


_service: DeadLetterService | None = None


def get_dead_letter_service() -> DeadLetterService:
    """Get the DeadLetterService singleton instance."""
    global _service
    if _service is None:
        _service = DeadLetterService()
    return _service
