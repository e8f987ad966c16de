"""Delivery queue interface and shared job types.

A delivery job carries one notification through a bounded number of send
attempts. The queue owns attempt accounting and the retry schedule; the
worker only reports success (`ack`) or failure (`fail`).

Job lifecycle:
    pending -> active -> completed
                      -> delayed -> active -> ...
                      -> dead_lettered (after the last allowed attempt)

Delivery is at-least-once: a job whose lease expires (worker crash, or an
attempt slower than the lease timeout) is returned to the queue and may be
attempted again by another worker.
"""

from __future__ import annotations

import hashlib
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

SEND_EMAIL_JOB = "send-email"
DEDUPE_KEY_PREFIX = "notif:dedupe:"


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobState(StrEnum):
    """Delivery job state."""

    PENDING = "pending"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEAD_LETTERED = "dead_lettered"


@dataclass(slots=True)
class DeliveryJob:
    """A unit of delivery work.

    Attributes:
        id: Job identifier.
        name: Job type; always "send-email" for notification delivery.
        payload: `{"notification_id": ..., "user_id": ...}`.
        attempts_made: Failed attempts so far.
        max_attempts: Attempt budget.
        state: Current lifecycle state.
        available_at: Earliest time the job may be leased.
        replay_of: Dead-lettered job this job was replayed from.
    """

    id: str
    payload: dict[str, Any]
    name: str = SEND_EMAIL_JOB
    attempts_made: int = 0
    max_attempts: int = 5
    state: JobState = JobState.PENDING
    created_at: datetime = field(default_factory=utcnow)
    available_at: datetime = field(default_factory=utcnow)
    leased_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None
    dedupe_key: str | None = None
    replay_of: str | None = None

    @property
    def notification_id(self) -> str | None:
        return self.payload.get("notification_id")

    @property
    def user_id(self) -> str | None:
        return self.payload.get("user_id")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        for key in ("created_at", "available_at", "leased_at", "finished_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryJob:
        values = dict(data)
        values["state"] = JobState(values["state"])
        for key in ("created_at", "available_at", "leased_at", "finished_at"):
            if values.get(key):
                values[key] = datetime.fromisoformat(values[key])
        return cls(**values)


@dataclass(frozen=True, slots=True)
class DeadLetterEntry:
    """Terminal record of a job that exhausted its attempt budget.

    Entries are immutable; replays are recorded separately as
    ReplayAuditEntry values.
    """

    job_id: str
    name: str
    payload: dict[str, Any]
    attempts_made: int
    max_attempts: int
    failed_reason: str
    failed_at: datetime
    created_at: datetime
    channel: str = "email"
    recipient: str | None = None
    replay_of: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["failed_at"] = self.failed_at.isoformat()
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeadLetterEntry:
        values = dict(data)
        values["failed_at"] = datetime.fromisoformat(values["failed_at"])
        values["created_at"] = datetime.fromisoformat(values["created_at"])
        return cls(**values)


@dataclass(frozen=True, slots=True)
class ReplayAuditEntry:
    """Who replayed a dead-lettered job, when, why, and into which new job."""

    dead_letter_job_id: str
    new_job_id: str
    replayed_at: datetime
    reason: str | None = None
    actor_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["replayed_at"] = self.replayed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplayAuditEntry:
        values = dict(data)
        values["replayed_at"] = datetime.fromisoformat(values["replayed_at"])
        return cls(**values)


@dataclass(frozen=True, slots=True)
class DeadLetterFilter:
    """Filter for listing dead-lettered jobs. All bounds are inclusive."""

    failed_after: datetime | None = None
    failed_before: datetime | None = None
    min_attempts: int | None = None
    search: str | None = None

    def matches(self, entry: DeadLetterEntry) -> bool:
        if self.failed_after is not None and entry.failed_at < self.failed_after:
            return False
        if self.failed_before is not None and entry.failed_at > self.failed_before:
            return False
        if self.min_attempts is not None and entry.attempts_made < self.min_attempts:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = (entry.job_id, entry.failed_reason, entry.recipient or "")
            if not any(needle in value.lower() for value in haystack):
                return False
        return True


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    The first attempt runs immediately. After the n-th failed attempt the
    next one is delayed ``base_delay_ms * 2 ** (n - 1)``; with the defaults
    attempts start at roughly 0s, 2s, 6s, 14s and 30s (gaps of 2, 4, 8 and
    16 seconds). The job is dead-lettered when the n-th failure reaches
    ``max_attempts``.
    """

    max_attempts: int = 5
    base_delay_ms: int = 2000

    def delay_for(self, attempts_made: int) -> timedelta:
        """Delay before the next attempt, given the number of failed attempts so far."""
        if attempts_made <= 0:
            return timedelta(0)
        return timedelta(milliseconds=self.base_delay_ms * 2 ** (attempts_made - 1))

    def is_exhausted(self, attempts_made: int, max_attempts: int | None = None) -> bool:
        return attempts_made >= (max_attempts or self.max_attempts)


@dataclass(frozen=True, slots=True)
class QueueStats:
    pending: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    dead_lettered: int = 0


def dedupe_key_for(event_type: str, recipient: str, entity_id: str) -> str:
    """Idempotency key for an enqueue: `notif:dedupe:<sha256>`."""
    digest = hashlib.sha256(f"{event_type}:{recipient}:{entity_id}".encode()).hexdigest()
    return f"{DEDUPE_KEY_PREFIX}{digest}"


def new_job_id() -> str:
    return uuid.uuid4().hex


class DeliveryQueue(ABC):
    """Abstract delivery queue.

    Implementations must guarantee that a leased job is not handed to a
    second consumer until it is acked, failed, or its lease expires.

    Example:
        job = await queue.enqueue({"notification_id": nid, "user_id": uid})

        leased = await queue.lease()
        try:
            await send(leased)
        except Exception as exc:
            await queue.fail(leased, str(exc))
        else:
            await queue.ack(leased)
    """

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self.policy = policy or RetryPolicy()

    # ──────────────────────────────────────────────────────────────
    # Core queue operations
    # ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def enqueue(
        self,
        payload: dict[str, Any],
        *,
        name: str = SEND_EMAIL_JOB,
        dedupe_key: str | None = None,
        replay_of: str | None = None,
    ) -> DeliveryJob:
        """Add a job, ready immediately, with a fresh attempt counter.

        When ``dedupe_key`` is given and a job was enqueued under the same
        key within the dedupe TTL, that job is returned instead.
        """
        ...

    @abstractmethod
    async def lease(self) -> DeliveryJob | None:
        """Take the next ready job and mark it active, or return None."""
        ...

    @abstractmethod
    async def ack(self, job: DeliveryJob) -> None:
        """Mark an active job completed."""
        ...

    @abstractmethod
    async def retry_with_delay(self, job: DeliveryJob, error: str, delay: timedelta) -> DeliveryJob:
        """Record a failed attempt and schedule the next one after ``delay``."""
        ...

    @abstractmethod
    async def dead_letter(
        self,
        job: DeliveryJob,
        error: str,
        *,
        recipient: str | None = None,
    ) -> DeadLetterEntry:
        """Record the final failed attempt and move the job to the dead-letter store."""
        ...

    async def fail(
        self,
        job: DeliveryJob,
        error: str,
        *,
        recipient: str | None = None,
    ) -> DeliveryJob | DeadLetterEntry:
        """Apply the retry policy to a failed attempt.

        Returns the rescheduled job, or the dead-letter entry when the
        attempt budget is spent.
        """
        attempts = job.attempts_made + 1
        if self.policy.is_exhausted(attempts, job.max_attempts):
            return await self.dead_letter(job, error, recipient=recipient)
        return await self.retry_with_delay(job, error, self.policy.delay_for(attempts))

    # ──────────────────────────────────────────────────────────────
    # Dead-letter store
    # ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_dead_letter(self, job_id: str) -> DeadLetterEntry | None: ...

    @abstractmethod
    async def list_dead_letters(
        self,
        filters: DeadLetterFilter | None = None,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[DeadLetterEntry], int]:
        """Matching entries, newest failure first, plus the total match count."""
        ...

    @abstractmethod
    async def remove_dead_letter(self, job_id: str) -> bool: ...

    @abstractmethod
    async def record_replay(self, entry: ReplayAuditEntry) -> None: ...

    @abstractmethod
    async def list_replays(self, job_id: str) -> list[ReplayAuditEntry]: ...

    # ──────────────────────────────────────────────────────────────
    # Introspection and maintenance
    # ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_job(self, job_id: str) -> DeliveryJob | None: ...

    @abstractmethod
    async def stats(self) -> QueueStats: ...

    @abstractmethod
    async def recover_stalled(self) -> int:
        """Return jobs whose lease expired to the queue. Returns the number recovered."""
        ...

    async def connect(self) -> None:  # noqa: B027
        """Open backend connections. No-op for in-process queues."""

    async def disconnect(self) -> None:  # noqa: B027
        """Close backend connections. No-op for in-process queues."""

