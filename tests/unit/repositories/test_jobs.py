"""
Unit tests for JobRepository: conditional transitions, atomic counters,
and recovery queries.
"""

import asyncio

import pytest

from makergrade.models.job import JobKind, JobStatus
from makergrade.repositories.jobs import JobNotFoundError


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_is_queued_with_prefixed_id(self, jobs):
        job = await jobs.create(JobKind.LABEL, {"limit": 3})

        assert job.id.startswith("label_")
        assert job.status is JobStatus.QUEUED
        assert job.config == {"limit": 3}
        assert job.created_at is not None
        assert job.finished_at is None
        assert job.total_count == 0

    @pytest.mark.asyncio
    async def test_mark_running_only_from_queued_and_resets_counters(self, jobs):
        job = await jobs.create(JobKind.CRAWL, {})
        await jobs.increment(
            JobKind.CRAWL, job.id, processed=4, failed=1, discovered=9, last_error="x"
        )

        assert await jobs.mark_running(JobKind.CRAWL, job.id) is True
        assert await jobs.mark_running(JobKind.CRAWL, job.id) is False

        running = await jobs.get(JobKind.CRAWL, job.id)
        assert running.status is JobStatus.RUNNING
        assert running.started_at is not None
        assert running.processed_count == 0
        assert running.failed_count == 0
        assert running.discovered_count == 0
        assert running.last_error is None

    @pytest.mark.asyncio
    async def test_transition_requires_expected_status(self, jobs):
        job = await jobs.create(JobKind.CRAWL, {})

        assert not await jobs.transition(JobKind.CRAWL, job.id, JobStatus.RUNNING, JobStatus.PAUSED)
        assert await jobs.get_status(JobKind.CRAWL, job.id) is JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_terminal_writes_do_not_override_external_change(self, jobs):
        job = await jobs.create(JobKind.CRAWL, {})
        await jobs.mark_running(JobKind.CRAWL, job.id)
        await jobs.fail_unfinished("cleared by new run")

        assert await jobs.complete(JobKind.CRAWL, job.id) is False
        assert await jobs.fail(JobKind.CRAWL, job.id, "late error") is False

        final = await jobs.get(JobKind.CRAWL, job.id)
        assert final.status is JobStatus.FAILED
        assert final.last_error == "cleared by new run"

    @pytest.mark.asyncio
    async def test_paused_job_can_complete(self, jobs):
        job = await jobs.create(JobKind.LABEL, {})
        await jobs.mark_running(JobKind.LABEL, job.id)
        await jobs.transition(JobKind.LABEL, job.id, JobStatus.RUNNING, JobStatus.PAUSED)

        assert await jobs.complete(JobKind.LABEL, job.id) is True
        assert (await jobs.get(JobKind.LABEL, job.id)).finished_at is not None

    @pytest.mark.asyncio
    async def test_fail_unfinished_counts_both_kinds(self, jobs):
        await jobs.create(JobKind.CRAWL, {})
        await jobs.create(JobKind.LABEL, {})
        done = await jobs.create(JobKind.LABEL, {})
        await jobs.mark_running(JobKind.LABEL, done.id)
        await jobs.complete(JobKind.LABEL, done.id)

        assert await jobs.fail_unfinished("reset") == 2
        assert await jobs.fail_unfinished("reset") == 0

    @pytest.mark.asyncio
    async def test_require_missing(self, jobs):
        with pytest.raises(JobNotFoundError) as exc_info:
            await jobs.require(JobKind.CRAWL, "crawl_nope")

        assert exc_info.value.job_id == "crawl_nope"
        assert await jobs.get_status(JobKind.CRAWL, "crawl_nope") is None


class TestCounters:
    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, jobs):
        job = await jobs.create(JobKind.CRAWL, {})

        await asyncio.gather(
            *(jobs.increment(JobKind.CRAWL, job.id, processed=1) for _ in range(10)),
            *(jobs.increment(JobKind.CRAWL, job.id, failed=1) for _ in range(5)),
        )

        counted = await jobs.get(JobKind.CRAWL, job.id)
        assert counted.processed_count == 10
        assert counted.failed_count == 5

    @pytest.mark.asyncio
    async def test_latest_error_wins(self, jobs):
        job = await jobs.create(JobKind.LABEL, {})

        await jobs.increment(JobKind.LABEL, job.id, failed=1, last_error="first")
        await jobs.increment(JobKind.LABEL, job.id, failed=1, last_error="second")

        assert (await jobs.get(JobKind.LABEL, job.id)).last_error == "second"

    @pytest.mark.asyncio
    async def test_discovered_only_for_crawl(self, jobs):
        job = await jobs.create(JobKind.LABEL, {})

        with pytest.raises(ValueError):
            await jobs.increment(JobKind.LABEL, job.id, discovered=1)

    @pytest.mark.asyncio
    async def test_set_total(self, jobs):
        job = await jobs.create(JobKind.LABEL, {})

        await jobs.set_total(job.id, 17)

        assert (await jobs.get(JobKind.LABEL, job.id)).total_count == 17


class TestRecoveryQueries:
    @pytest.mark.asyncio
    async def test_find_recoverable_prefers_newest(self, jobs):
        older = await jobs.create(JobKind.CRAWL, {})
        await jobs.mark_running(JobKind.CRAWL, older.id)
        newer = await jobs.create(JobKind.CRAWL, {})

        assert (await jobs.find_recoverable(JobKind.CRAWL)).id == newer.id

    @pytest.mark.asyncio
    async def test_requeue_only_from_queued_or_running(self, jobs):
        job = await jobs.create(JobKind.CRAWL, {})
        await jobs.mark_running(JobKind.CRAWL, job.id)
        await jobs.transition(JobKind.CRAWL, job.id, JobStatus.RUNNING, JobStatus.PAUSED)

        assert await jobs.find_recoverable(JobKind.CRAWL) is None
        assert await jobs.requeue(JobKind.CRAWL, job.id) is False

    @pytest.mark.asyncio
    async def test_latest_by_kind(self, jobs):
        crawl = await jobs.create(JobKind.CRAWL, {})
        await jobs.create(JobKind.LABEL, {})

        assert (await jobs.latest(JobKind.CRAWL)).id == crawl.id
