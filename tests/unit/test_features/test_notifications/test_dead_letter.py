"""Tests for dead-letter listing, replay and deletion."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from confession_service.core.exceptions import NotFoundException, ValidationException
from confession_service.features.notifications.dead_letter import DeadLetterService, build_filter
from confession_service.infra.queue import DeadLetterFilter, InMemoryDeliveryQueue, JobState, RetryPolicy
from tests.utils import utc

START = utc(2026, 2, 1, 8, 0)


class Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self):
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def memory_queue(clock) -> InMemoryDeliveryQueue:
    return InMemoryDeliveryQueue(RetryPolicy(max_attempts=2, base_delay_ms=0), clock=clock)


@pytest.fixture
def service(memory_queue) -> DeadLetterService:
    return DeadLetterService(memory_queue)


async def _dead_letter(queue: InMemoryDeliveryQueue, clock: Clock, *, at, reason="smtp down", recipient=None):
    clock.now = at
    job = await queue.enqueue({"notification_id": f"n-{at.hour}", "user_id": "user-1"})
    leased = await queue.lease()
    return await queue.dead_letter(leased, reason, recipient=recipient), job


# ──────────────────────────────────────────────────────────────
# Filters
# ──────────────────────────────────────────────────────────────


class TestBuildFilter:
    def test_empty_filter(self):
        assert build_filter() == DeadLetterFilter()

    def test_naive_datetimes_are_utc(self):
        from datetime import datetime

        filters = build_filter(failed_after=datetime(2026, 1, 1, 0, 0))
        assert filters.failed_after == utc(2026, 1, 1)

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            build_filter(failed_after=utc(2026, 1, 2), failed_before=utc(2026, 1, 1))
        assert exc_info.value.status_code == 422

    def test_equal_bounds_rejected(self):
        with pytest.raises(ValidationException):
            build_filter(failed_after=utc(2026, 1, 1), failed_before=utc(2026, 1, 1))

    def test_blank_search_ignored(self):
        assert build_filter(search="   ").search is None
        assert build_filter(search=" smtp ").search == "smtp"


# ──────────────────────────────────────────────────────────────
# Listing
# ──────────────────────────────────────────────────────────────


class TestListFailed:
    @pytest.mark.asyncio
    async def test_newest_failure_first(self, service, memory_queue, clock):
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 11))
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 10))

        entries, total = await service.list_failed()

        assert total == 3
        assert [e.failed_at.hour for e in entries] == [11, 10, 9]

    @pytest.mark.asyncio
    async def test_time_bounds_are_inclusive(self, service, memory_queue, clock):
        for hour in (9, 10, 11, 12):
            await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, hour))

        entries, total = await service.list_failed(
            build_filter(failed_after=utc(2026, 2, 1, 10), failed_before=utc(2026, 2, 1, 11)),
        )

        assert total == 2
        assert sorted(e.failed_at.hour for e in entries) == [10, 11]

    @pytest.mark.asyncio
    async def test_search_matches_reason_and_recipient(self, service, memory_queue, clock):
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9), reason="Mailbox FULL")
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 10), recipient="bob@example.com")
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 11), reason="timeout")

        _, by_reason = await service.list_failed(build_filter(search="mailbox full"))
        _, by_recipient = await service.list_failed(build_filter(search="BOB@"))

        assert by_reason == 1
        assert by_recipient == 1

    @pytest.mark.asyncio
    async def test_search_matches_job_id(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))

        entries, _ = await service.list_failed(build_filter(search=entry.job_id[:12]))

        assert [e.job_id for e in entries] == [entry.job_id]

    @pytest.mark.asyncio
    async def test_min_attempts(self, service, memory_queue, clock):
        clock.now = utc(2026, 2, 1, 9)
        job = await memory_queue.enqueue({"notification_id": "n1", "user_id": "user-1"})
        await memory_queue.fail(await memory_queue.lease(), "first")
        await memory_queue.fail(await memory_queue.lease(), "second")
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 10))

        entries, total = await service.list_failed(build_filter(min_attempts=2))

        assert total == 1
        assert entries[0].job_id == job.id
        assert entries[0].attempts_made == 2

    @pytest.mark.asyncio
    async def test_pagination(self, service, memory_queue, clock):
        for hour in range(9, 14):
            await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, hour))

        page_two, total = await service.list_failed(page=2, limit=2)

        assert total == 5
        assert [e.failed_at.hour for e in page_two] == [11, 10]

    @pytest.mark.asyncio
    async def test_invalid_page(self, service):
        with pytest.raises(ValidationException):
            await service.list_failed(page=0)


# ──────────────────────────────────────────────────────────────
# Replay
# ──────────────────────────────────────────────────────────────


class TestReplay:
    @pytest.mark.asyncio
    async def test_replay_enqueues_fresh_job(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))

        result = await service.replay(entry.job_id, "smtp fixed", actor_id="admin-1")

        assert result.success is True
        assert result.message == f"Job {entry.job_id} re-enqueued"
        new_job = await memory_queue.get_job(result.job_id)
        assert new_job.id != entry.job_id
        assert new_job.state == JobState.PENDING
        assert new_job.attempts_made == 0
        assert new_job.payload == entry.payload
        assert new_job.replay_of == entry.job_id

    @pytest.mark.asyncio
    async def test_replay_leaves_entry_unchanged(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))

        await service.replay(entry.job_id)

        assert await memory_queue.get_dead_letter(entry.job_id) == entry

    @pytest.mark.asyncio
    async def test_replay_records_audit(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))

        result = await service.replay(entry.job_id, "retry after outage", actor_id="admin-1")

        [audit] = await service.list_replays(entry.job_id)
        assert audit.new_job_id == result.job_id
        assert audit.reason == "retry after outage"
        assert audit.actor_id == "admin-1"

    @pytest.mark.asyncio
    async def test_concurrent_replays_create_independent_jobs(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))

        results = await asyncio.gather(*(service.replay(entry.job_id) for _ in range(3)))

        assert len({r.job_id for r in results}) == 3
        assert len(await service.list_replays(entry.job_id)) == 3

    @pytest.mark.asyncio
    async def test_replay_unknown_job(self, service):
        with pytest.raises(NotFoundException) as exc_info:
            await service.replay("missing")
        assert exc_info.value.type == "dead-letter-job-not-found"

    @pytest.mark.asyncio
    async def test_bulk_replay_honours_filters_and_limit(self, service, memory_queue, clock):
        for hour in (9, 10, 11):
            await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, hour), reason="smtp down")
        await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 12), reason="bad template")

        new_ids, failed = await service.bulk_replay(build_filter(search="smtp"), limit=2, actor_id="admin-1")

        assert len(new_ids) == 2
        assert failed == []
        assert (await memory_queue.stats()).pending == 2

    @pytest.mark.asyncio
    async def test_replayed_job_fails_into_new_entry(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))
        result = await service.replay(entry.job_id)

        clock.now = START + timedelta(hours=5)
        leased = await memory_queue.lease()
        new_entry = await memory_queue.dead_letter(leased, "still broken")

        assert new_entry.job_id == result.job_id
        assert new_entry.replay_of == entry.job_id
        assert (await memory_queue.stats()).dead_lettered == 2


# ──────────────────────────────────────────────────────────────
# Deletion
# ──────────────────────────────────────────────────────────────


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_entry(self, service, memory_queue, clock):
        entry, _ = await _dead_letter(memory_queue, clock, at=utc(2026, 2, 1, 9))

        await service.delete(entry.job_id, actor_id="admin-1")

        with pytest.raises(NotFoundException):
            await service.get(entry.job_id)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, service):
        with pytest.raises(NotFoundException):
            await service.delete("missing")
