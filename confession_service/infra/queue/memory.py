"""In-process delivery queue.

Used for development, single-process deployments and tests. State lives in
the process; nothing survives a restart. The clock is injectable so tests
can step through the backoff schedule without sleeping.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from confession_service.infra.logging import get_lazy_logger
from confession_service.infra.queue.base import (
    SEND_EMAIL_JOB,
    DeadLetterEntry,
    DeadLetterFilter,
    DeliveryJob,
    DeliveryQueue,
    JobState,
    QueueStats,
    ReplayAuditEntry,
    RetryPolicy,
    new_job_id,
    utcnow,
)

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)


class InMemoryDeliveryQueue(DeliveryQueue):
    """Delivery queue backed by dictionaries and an asyncio.Lock.

    Example:
        now = datetime(2025, 1, 1, tzinfo=UTC)
        queue = InMemoryDeliveryQueue(clock=lambda: now)
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        retain_completed: int = 500,
        lease_timeout: timedelta = timedelta(minutes=5),
        dedupe_ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(policy)
        self._clock = clock
        self._lease_timeout = lease_timeout
        self._dedupe_ttl = dedupe_ttl
        self._lock = asyncio.Lock()
        self._jobs: dict[str, DeliveryJob] = {}
        self._completed: deque[str] = deque()
        self._retain_completed = retain_completed
        self._dead: dict[str, DeadLetterEntry] = {}
        self._replays: dict[str, list[ReplayAuditEntry]] = {}
        self._dedupe: dict[str, tuple[str, datetime]] = {}

    def now(self) -> datetime:
        return self._clock()

    async def enqueue(
        self,
        payload: dict[str, Any],
        *,
        name: str = SEND_EMAIL_JOB,
        dedupe_key: str | None = None,
        replay_of: str | None = None,
    ) -> DeliveryJob:
        async with self._lock:
            now = self.now()
            self._purge_expired_dedupe(now)
            if dedupe_key is not None:
                existing = self._dedupe.get(dedupe_key)
                if existing is not None and existing[0] in self._jobs:
                    _lazy.debug(lambda: f"enqueue deduplicated: {dedupe_key} -> {existing[0]}")
                    return self._jobs[existing[0]]

            job = DeliveryJob(
                id=new_job_id(),
                name=name,
                payload=dict(payload),
                max_attempts=self.policy.max_attempts,
                created_at=now,
                available_at=now,
                dedupe_key=dedupe_key,
                replay_of=replay_of,
            )
            self._jobs[job.id] = job
            if dedupe_key is not None:
                self._dedupe[dedupe_key] = (job.id, now + self._dedupe_ttl)

        logger.info(
            "Delivery job enqueued",
            extra={"job_id": job.id, "job_name": name, "replay_of": replay_of},
        )
        return job

    def _purge_expired_dedupe(self, now: datetime) -> None:
        expired = [key for key, (_, expires_at) in self._dedupe.items() if expires_at <= now]
        for key in expired:
            del self._dedupe[key]

    async def lease(self) -> DeliveryJob | None:
        async with self._lock:
            now = self.now()
            ready = [
                job
                for job in self._jobs.values()
                if job.state in (JobState.PENDING, JobState.DELAYED) and job.available_at <= now
            ]
            if not ready:
                return None
            job = min(ready, key=lambda j: (j.available_at, j.created_at))
            leased = replace(job, state=JobState.ACTIVE, leased_at=now)
            self._jobs[job.id] = leased

        _lazy.debug(lambda: f"lease: {leased.id} attempt {leased.attempts_made + 1}/{leased.max_attempts}")
        return leased

    async def ack(self, job: DeliveryJob) -> None:
        async with self._lock:
            current = self._jobs.get(job.id)
            if current is None or current.state != JobState.ACTIVE:
                return
            self._jobs[job.id] = replace(
                current,
                state=JobState.COMPLETED,
                leased_at=None,
                finished_at=self.now(),
            )
            self._completed.append(job.id)
            while len(self._completed) > self._retain_completed:
                self._jobs.pop(self._completed.popleft(), None)

    async def retry_with_delay(self, job: DeliveryJob, error: str, delay: timedelta) -> DeliveryJob:
        async with self._lock:
            current = self._jobs.get(job.id, job)
            rescheduled = replace(
                current,
                state=JobState.DELAYED,
                attempts_made=current.attempts_made + 1,
                available_at=self.now() + delay,
                leased_at=None,
                last_error=error,
            )
            self._jobs[job.id] = rescheduled

        logger.warning(
            "Delivery attempt failed, retry scheduled",
            extra={
                "job_id": job.id,
                "attempts_made": rescheduled.attempts_made,
                "max_attempts": rescheduled.max_attempts,
                "delay_seconds": delay.total_seconds(),
                "error": error,
            },
        )
        return rescheduled

    async def dead_letter(
        self,
        job: DeliveryJob,
        error: str,
        *,
        recipient: str | None = None,
    ) -> DeadLetterEntry:
        async with self._lock:
            now = self.now()
            current = self._jobs.get(job.id, job)
            attempts = current.attempts_made + 1
            self._jobs[job.id] = replace(
                current,
                state=JobState.DEAD_LETTERED,
                attempts_made=attempts,
                leased_at=None,
                finished_at=now,
                last_error=error,
            )
            entry = DeadLetterEntry(
                job_id=current.id,
                name=current.name,
                payload=dict(current.payload),
                attempts_made=attempts,
                max_attempts=current.max_attempts,
                failed_reason=error,
                failed_at=now,
                created_at=current.created_at,
                recipient=recipient,
                replay_of=current.replay_of,
            )
            self._dead[entry.job_id] = entry

        logger.error(
            "Delivery job dead-lettered",
            extra={
                "job_id": entry.job_id,
                "attempts_made": entry.attempts_made,
                "failed_reason": error,
            },
        )
        return entry

    async def get_dead_letter(self, job_id: str) -> DeadLetterEntry | None:
        return self._dead.get(job_id)

    async def list_dead_letters(
        self,
        filters: DeadLetterFilter | None = None,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[DeadLetterEntry], int]:
        filters = filters or DeadLetterFilter()
        matching = sorted(
            (entry for entry in self._dead.values() if filters.matches(entry)),
            key=lambda e: e.failed_at,
            reverse=True,
        )
        return matching[offset : offset + limit], len(matching)

    async def remove_dead_letter(self, job_id: str) -> bool:
        async with self._lock:
            removed = self._dead.pop(job_id, None)
            if removed is not None:
                self._jobs.pop(job_id, None)
        return removed is not None

    async def record_replay(self, entry: ReplayAuditEntry) -> None:
        async with self._lock:
            self._replays.setdefault(entry.dead_letter_job_id, []).append(entry)

    async def list_replays(self, job_id: str) -> list[ReplayAuditEntry]:
        return list(self._replays.get(job_id, []))

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        return self._jobs.get(job_id)

    async def stats(self) -> QueueStats:
        counts = dict.fromkeys(JobState, 0)
        for job in self._jobs.values():
            counts[job.state] += 1
        return QueueStats(
            pending=counts[JobState.PENDING],
            delayed=counts[JobState.DELAYED],
            active=counts[JobState.ACTIVE],
            completed=counts[JobState.COMPLETED],
            dead_lettered=len(self._dead),
        )

    async def recover_stalled(self) -> int:
        async with self._lock:
            now = self.now()
            stalled = [
                job
                for job in self._jobs.values()
                if job.state == JobState.ACTIVE
                and job.leased_at is not None
                and job.leased_at + self._lease_timeout <= now
            ]
            for job in stalled:
                self._jobs[job.id] = replace(job, state=JobState.PENDING, leased_at=None, available_at=now)

        if stalled:
            logger.warning(
                "Recovered stalled delivery jobs",
                extra={"count": len(stalled), "job_ids": [j.id for j in stalled]},
            )
        return len(stalled)
