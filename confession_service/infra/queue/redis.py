"""Redis-backed delivery queue for multi-process deployments.

Redis Key Structure (``{p}`` = ``<redis key prefix><queue name>:``):
- {p}job:{job_id}        - JSON job record
- {p}waiting             - Sorted set of pending/delayed job ids by available_at
- {p}active              - Sorted set of leased job ids by leased_at
- {p}completed           - Sorted set of completed job ids by finished_at (trimmed)
- {p}dead                - Sorted set of dead-lettered job ids by failed_at
- {p}dead:{job_id}       - JSON dead-letter entry (never rewritten)
- {p}replays:{job_id}    - List of JSON replay audit entries
- notif:dedupe:<sha256>  - Enqueue idempotency key (SET NX EX)

Moves between ``waiting`` and ``active`` run as server-side scripts, so a job
id is always in exactly one of the two sets. Leasing pops the earliest ready
id into ``active`` in one step; a consumer that dies afterwards leaves the job
for recover_stalled().
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from redis.asyncio import ConnectionPool, Redis

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

_LEASE_MISSING_RECORD_SKIPS = 5

# KEYS: waiting, active. ARGV: now. Returns the claimed id or nil.
_CLAIM_READY_SCRIPT = """
local ids = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1], "LIMIT", 0, 1)
if #ids == 0 then
    return false
end
redis.call("ZREM", KEYS[1], ids[1])
redis.call("ZADD", KEYS[2], ARGV[1], ids[1])
return ids[1]
"""

# KEYS: active, waiting, job record. ARGV: job id, now, job JSON. Returns 1 if moved.
_REQUEUE_STALLED_SCRIPT = """
if redis.call("ZREM", KEYS[1], ARGV[1]) == 0 then
    return 0
end
redis.call("ZADD", KEYS[2], ARGV[2], ARGV[1])
redis.call("SET", KEYS[3], ARGV[3])
return 1
"""


class RedisDeliveryQueue(DeliveryQueue):
    """Delivery queue stored in Redis.

    Example:
        queue = RedisDeliveryQueue(
            redis_url="redis://localhost:6379/0",
            key_prefix="confession:notifications:",
        )
        await queue.connect()
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        redis_url: str | None = None,
        client: Redis | None = None,
        key_prefix: str = "notifications:",
        retain_completed: int = 500,
        lease_timeout: timedelta = timedelta(minutes=5),
        dedupe_ttl: timedelta = timedelta(hours=1),
        pool_kwargs: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(policy)
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._pool_kwargs = pool_kwargs or {"decode_responses": True}
        self._retain_completed = retain_completed
        self._lease_timeout = lease_timeout
        self._dedupe_ttl = dedupe_ttl
        self._clock = clock
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = client

    # Key generation helpers
    def _job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}job:{job_id}"

    def _dead_key(self, job_id: str) -> str:
        return f"{self.key_prefix}dead:{job_id}"

    def _replays_key(self, job_id: str) -> str:
        return f"{self.key_prefix}replays:{job_id}"

    @property
    def _waiting_key(self) -> str:
        return f"{self.key_prefix}waiting"

    @property
    def _active_key(self) -> str:
        return f"{self.key_prefix}active"

    @property
    def _completed_key(self) -> str:
        return f"{self.key_prefix}completed"

    @property
    def _dead_index_key(self) -> str:
        return f"{self.key_prefix}dead"

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._client is not None:
            return
        if not self.redis_url:
            msg = "RedisDeliveryQueue requires redis_url or client"
            raise RuntimeError(msg)

        logger.info("Connecting to Redis for delivery queue")
        self._pool = ConnectionPool.from_url(self.redis_url, **self._pool_kwargs)
        self._client = Redis(connection_pool=self._pool)
        await self._client.ping()
        logger.info("Delivery queue Redis connection established")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client is not None and self._pool is not None:
            await self._client.aclose()
            await self._pool.disconnect()
            self._pool = None
        self._client = None

    @property
    def client(self) -> Redis:
        if self._client is None:
            msg = "Delivery queue not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    async def _load(self, job_id: str) -> DeliveryJob | None:
        raw = await self.client.get(self._job_key(job_id))
        return DeliveryJob.from_dict(json.loads(raw)) if raw else None

    async def _save(self, job: DeliveryJob) -> None:
        await self.client.set(self._job_key(job.id), json.dumps(job.to_dict()))

    # ──────────────────────────────────────────────────────────────
    # Core queue operations
    # ──────────────────────────────────────────────────────────────

    async def enqueue(
        self,
        payload: dict[str, Any],
        *,
        name: str = SEND_EMAIL_JOB,
        dedupe_key: str | None = None,
        replay_of: str | None = None,
    ) -> DeliveryJob:
        now = self._clock()
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

        if dedupe_key is not None:
            ttl = int(self._dedupe_ttl.total_seconds())
            claimed = await self.client.set(dedupe_key, job.id, nx=True, ex=ttl)
            if not claimed:
                existing_id = await self.client.get(dedupe_key)
                existing = await self._load(existing_id) if existing_id else None
                if existing is not None:
                    logger.info(
                        "Delivery job deduplicated",
                        extra={"job_id": existing.id, "dedupe_key": dedupe_key},
                    )
                    return existing
                await self.client.set(dedupe_key, job.id, ex=ttl)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.id), json.dumps(job.to_dict()))
            pipe.zadd(self._waiting_key, {job.id: now.timestamp()})
            await pipe.execute()

        logger.info(
            "Delivery job enqueued",
            extra={"job_id": job.id, "job_name": name, "replay_of": replay_of},
        )
        return job

    async def lease(self) -> DeliveryJob | None:
        for _ in range(_LEASE_MISSING_RECORD_SKIPS):
            now = self._clock()
            job_id = await self.client.eval(
                _CLAIM_READY_SCRIPT, 2, self._waiting_key, self._active_key, now.timestamp()
            )
            if job_id is None:
                return None

            job = await self._load(job_id)
            if job is None:
                logger.warning("Leased job record missing", extra={"job_id": job_id})
                await self.client.zrem(self._active_key, job_id)
                continue

            leased = replace(job, state=JobState.ACTIVE, leased_at=now)
            await self._save(leased)
            return leased
        return None

    async def ack(self, job: DeliveryJob) -> None:
        now = self._clock()
        completed = replace(job, state=JobState.COMPLETED, leased_at=None, finished_at=now)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._active_key, job.id)
            pipe.set(self._job_key(job.id), json.dumps(completed.to_dict()))
            pipe.zadd(self._completed_key, {job.id: now.timestamp()})
            await pipe.execute()
        await self._trim_completed()

    async def _trim_completed(self) -> None:
        overflow = await self.client.zcard(self._completed_key) - self._retain_completed
        if overflow <= 0:
            return
        evicted = await self.client.zrange(self._completed_key, 0, overflow - 1)
        if not evicted:
            return
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._completed_key, *evicted)
            pipe.delete(*(self._job_key(job_id) for job_id in evicted))
            await pipe.execute()

    async def retry_with_delay(self, job: DeliveryJob, error: str, delay: timedelta) -> DeliveryJob:
        available_at = self._clock() + delay
        rescheduled = replace(
            job,
            state=JobState.DELAYED,
            attempts_made=job.attempts_made + 1,
            available_at=available_at,
            leased_at=None,
            last_error=error,
        )
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._active_key, job.id)
            pipe.set(self._job_key(job.id), json.dumps(rescheduled.to_dict()))
            pipe.zadd(self._waiting_key, {job.id: available_at.timestamp()})
            await pipe.execute()

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
        now = self._clock()
        attempts = job.attempts_made + 1
        final = replace(
            job,
            state=JobState.DEAD_LETTERED,
            attempts_made=attempts,
            leased_at=None,
            finished_at=now,
            last_error=error,
        )
        entry = DeadLetterEntry(
            job_id=job.id,
            name=job.name,
            payload=dict(job.payload),
            attempts_made=attempts,
            max_attempts=job.max_attempts,
            failed_reason=error,
            failed_at=now,
            created_at=job.created_at,
            recipient=recipient,
            replay_of=job.replay_of,
        )
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._active_key, job.id)
            pipe.set(self._job_key(job.id), json.dumps(final.to_dict()))
            pipe.set(self._dead_key(job.id), json.dumps(entry.to_dict()))
            pipe.zadd(self._dead_index_key, {job.id: now.timestamp()})
            await pipe.execute()

        logger.error(
            "Delivery job dead-lettered",
            extra={"job_id": job.id, "attempts_made": attempts, "failed_reason": error},
        )
        return entry

    # ──────────────────────────────────────────────────────────────
    # Dead-letter store
    # ──────────────────────────────────────────────────────────────

    async def get_dead_letter(self, job_id: str) -> DeadLetterEntry | None:
        raw = await self.client.get(self._dead_key(job_id))
        return DeadLetterEntry.from_dict(json.loads(raw)) if raw else None

    async def list_dead_letters(
        self,
        filters: DeadLetterFilter | None = None,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[DeadLetterEntry], int]:
        filters = filters or DeadLetterFilter()
        max_score = filters.failed_before.timestamp() if filters.failed_before else "+inf"
        min_score = filters.failed_after.timestamp() if filters.failed_after else "-inf"
        job_ids = await self.client.zrevrangebyscore(self._dead_index_key, max_score, min_score)
        if not job_ids:
            return [], 0

        raw_entries = await self.client.mget([self._dead_key(job_id) for job_id in job_ids])
        matching = [
            entry
            for entry in (DeadLetterEntry.from_dict(json.loads(raw)) for raw in raw_entries if raw)
            if filters.matches(entry)
        ]
        return matching[offset : offset + limit], len(matching)

    async def remove_dead_letter(self, job_id: str) -> bool:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._dead_index_key, job_id)
            pipe.delete(self._dead_key(job_id))
            pipe.delete(self._job_key(job_id))
            removed, _, _ = await pipe.execute()
        return bool(removed)

    async def record_replay(self, entry: ReplayAuditEntry) -> None:
        await self.client.rpush(
            self._replays_key(entry.dead_letter_job_id), json.dumps(entry.to_dict())
        )

    async def list_replays(self, job_id: str) -> list[ReplayAuditEntry]:
        raw_entries = await self.client.lrange(self._replays_key(job_id), 0, -1)
        return [ReplayAuditEntry.from_dict(json.loads(raw)) for raw in raw_entries]

    # ──────────────────────────────────────────────────────────────
    # Introspection and maintenance
    # ──────────────────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        return await self._load(job_id)

    async def stats(self) -> QueueStats:
        now = self._clock().timestamp()
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.zcount(self._waiting_key, "-inf", now)
            pipe.zcount(self._waiting_key, f"({now}", "+inf")
            pipe.zcard(self._active_key)
            pipe.zcard(self._completed_key)
            pipe.zcard(self._dead_index_key)
            pending, delayed, active, completed, dead = await pipe.execute()
        return QueueStats(
            pending=pending,
            delayed=delayed,
            active=active,
            completed=completed,
            dead_lettered=dead,
        )

    async def recover_stalled(self) -> int:
        now = self._clock()
        cutoff = (now - self._lease_timeout).timestamp()
        stalled = await self.client.zrangebyscore(self._active_key, "-inf", cutoff)
        recovered = 0
        for job_id in stalled:
            job = await self._load(job_id)
            if job is None:
                await self.client.zrem(self._active_key, job_id)
                continue
            pending = replace(job, state=JobState.PENDING, leased_at=None, available_at=now)
            moved = await self.client.eval(
                _REQUEUE_STALLED_SCRIPT,
                3,
                self._active_key,
                self._waiting_key,
                self._job_key(job_id),
                job_id,
                now.timestamp(),
                json.dumps(pending.to_dict()),
            )
            if moved:
                recovered += 1

        if recovered:
            logger.warning("Recovered stalled delivery jobs", extra={"count": recovered})
        return recovered
