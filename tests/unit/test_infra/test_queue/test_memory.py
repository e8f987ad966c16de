"""Unit tests for the in-memory delivery queue and retry policy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from confession_service.infra.queue import (
    DeadLetterEntry,
    DeliveryJob,
    InMemoryDeliveryQueue,
    JobState,
    RetryPolicy,
    dedupe_key_for,
)

T0 = datetime(2026, 4, 1, 12, 0, tzinfo=UTC)


class Clock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def queue(clock) -> InMemoryDeliveryQueue:
    return InMemoryDeliveryQueue(
        RetryPolicy(max_attempts=5, base_delay_ms=2000),
        lease_timeout=timedelta(minutes=5),
        dedupe_ttl=timedelta(hours=1),
        retain_completed=2,
        clock=clock,
    )


# ──────────────────────────────────────────────────────────────
# RetryPolicy
# ──────────────────────────────────────────────────────────────


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=5, base_delay_ms=2000)

        assert [policy.delay_for(n).total_seconds() for n in range(1, 5)] == [2, 4, 8, 16]
        assert policy.delay_for(0) == timedelta(0)

    def test_exhaustion(self):
        policy = RetryPolicy(max_attempts=5)

        assert policy.is_exhausted(4) is False
        assert policy.is_exhausted(5) is True
        assert policy.is_exhausted(2, max_attempts=2) is True


def test_dedupe_key_is_stable_and_prefixed():
    key = dedupe_key_for("new_message", "a@example.com", "n-1")

    assert key.startswith("notif:dedupe:")
    assert key == dedupe_key_for("new_message", "a@example.com", "n-1")
    assert key != dedupe_key_for("new_message", "b@example.com", "n-1")


# ──────────────────────────────────────────────────────────────
# Enqueue and lease
# ──────────────────────────────────────────────────────────────


class TestEnqueueLease:
    @pytest.mark.asyncio
    async def test_enqueue_then_lease(self, queue):
        job = await queue.enqueue({"notification_id": "n-1", "user_id": "u-1"})

        assert job.state == JobState.PENDING
        assert job.max_attempts == 5

        leased = await queue.lease()
        assert leased.id == job.id
        assert leased.state == JobState.ACTIVE
        assert leased.leased_at == T0
        assert await queue.lease() is None

    @pytest.mark.asyncio
    async def test_lease_is_fifo(self, queue, clock):
        first = await queue.enqueue({"notification_id": "n-1"})
        clock.advance(seconds=1)
        second = await queue.enqueue({"notification_id": "n-2"})

        assert (await queue.lease()).id == first.id
        assert (await queue.lease()).id == second.id

    @pytest.mark.asyncio
    async def test_dedupe_returns_existing_job(self, queue):
        key = dedupe_key_for("new_message", "a@example.com", "n-1")

        first = await queue.enqueue({"notification_id": "n-1"}, dedupe_key=key)
        second = await queue.enqueue({"notification_id": "n-1"}, dedupe_key=key)

        assert first.id == second.id
        assert (await queue.stats()).pending == 1

    @pytest.mark.asyncio
    async def test_dedupe_expires(self, queue, clock):
        key = dedupe_key_for("new_message", "a@example.com", "n-1")
        first = await queue.enqueue({"notification_id": "n-1"}, dedupe_key=key)

        clock.advance(hours=2)
        second = await queue.enqueue({"notification_id": "n-1"}, dedupe_key=key)

        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_expired_dedupe_keys_are_dropped(self, queue, clock):
        stale = dedupe_key_for("new_message", "a@example.com", "n-1")
        await queue.enqueue({"notification_id": "n-1"}, dedupe_key=stale)

        clock.advance(hours=2)
        fresh = dedupe_key_for("new_message", "a@example.com", "n-2")
        await queue.enqueue({"notification_id": "n-2"})
        await queue.enqueue({"notification_id": "n-2"}, dedupe_key=fresh)

        assert set(queue._dedupe) == {fresh}

    @pytest.mark.asyncio
    async def test_ack_completes_and_trims_history(self, queue):
        jobs = [await queue.enqueue({"notification_id": f"n-{i}"}) for i in range(3)]
        for _ in jobs:
            await queue.ack(await queue.lease())

        assert await queue.get_job(jobs[0].id) is None
        assert (await queue.get_job(jobs[2].id)).state == JobState.COMPLETED
        assert (await queue.stats()).completed == 2


# ──────────────────────────────────────────────────────────────
# Failure handling
# ──────────────────────────────────────────────────────────────


class TestFail:
    @pytest.mark.asyncio
    async def test_backoff_schedule(self, queue, clock):
        job = await queue.enqueue({"notification_id": "n-1", "user_id": "u-1"})
        gaps = []

        for _ in range(4):
            leased = await queue.lease()
            rescheduled = await queue.fail(leased, "boom")
            assert isinstance(rescheduled, DeliveryJob)
            gaps.append((rescheduled.available_at - clock.now).total_seconds())
            assert await queue.lease() is None
            clock.now = rescheduled.available_at

        assert gaps == [2, 4, 8, 16]

        leased = await queue.lease()
        entry = await queue.fail(leased, "boom", recipient="a@example.com")

        assert isinstance(entry, DeadLetterEntry)
        assert entry.job_id == job.id
        assert entry.attempts_made == 5
        assert entry.recipient == "a@example.com"
        assert entry.failed_at == clock.now
        assert (await queue.get_job(job.id)).state == JobState.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_stats(self, queue):
        await queue.enqueue({"notification_id": "n-1"})
        await queue.enqueue({"notification_id": "n-2"})
        await queue.enqueue({"notification_id": "n-3"})
        await queue.fail(await queue.lease(), "boom")
        await queue.lease()

        stats = await queue.stats()

        assert stats.pending == 1
        assert stats.delayed == 1
        assert stats.active == 1
        assert stats.dead_lettered == 0

    @pytest.mark.asyncio
    async def test_recover_stalled(self, queue, clock):
        job = await queue.enqueue({"notification_id": "n-1"})
        await queue.lease()

        clock.advance(minutes=4)
        assert await queue.recover_stalled() == 0

        clock.advance(minutes=1)
        assert await queue.recover_stalled() == 1

        recovered = await queue.lease()
        assert recovered.id == job.id
        assert recovered.attempts_made == 0

    @pytest.mark.asyncio
    async def test_remove_dead_letter(self, queue):
        await queue.enqueue({"notification_id": "n-1"})
        entry = await queue.dead_letter(await queue.lease(), "boom")

        assert await queue.remove_dead_letter(entry.job_id) is True
        assert await queue.remove_dead_letter(entry.job_id) is False
        assert await queue.get_dead_letter(entry.job_id) is None


# ──────────────────────────────────────────────────────────────
# Serialization
# ──────────────────────────────────────────────────────────────


def test_job_dict_preserves_state_and_times():
    job = DeliveryJob(id="j1", payload={"notification_id": "n-1"}, state=JobState.DELAYED, available_at=T0)

    restored = DeliveryJob.from_dict(job.to_dict())

    assert restored.state == JobState.DELAYED
    assert restored.available_at == T0
    assert restored.leased_at is None
