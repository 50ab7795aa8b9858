"""
Unit tests for boot-time recovery of interrupted jobs.
"""

from unittest.mock import MagicMock

import pytest

from makergrade.jobs.recovery import RecoveryScheduler
from makergrade.jobs.service import JobService
from makergrade.models.job import JobKind, JobStatus
from tests.fakes import card


@pytest.fixture
def launch():
    return MagicMock()


class TestRecoveryScheduler:
    @pytest.mark.asyncio
    async def test_running_job_is_requeued_and_launched(self, jobs, launch):
        job = await jobs.create(JobKind.CRAWL, {"limit": 5})
        await jobs.mark_running(JobKind.CRAWL, job.id)

        recovered = await RecoveryScheduler(jobs, launch, delay=2.5).run()

        assert recovered == [(JobKind.CRAWL, job.id)]
        launch.assert_called_once_with(JobKind.CRAWL, job.id, 2.5)
        assert await jobs.get_status(JobKind.CRAWL, job.id) is JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_runs_once_per_process(self, jobs, launch):
        job = await jobs.create(JobKind.LABEL, {})
        scheduler = RecoveryScheduler(jobs, launch, delay=0)

        first = await scheduler.run()
        second = await scheduler.run()

        assert first == [(JobKind.LABEL, job.id)]
        assert second == []
        assert launch.call_count == 1

    @pytest.mark.asyncio
    async def test_only_most_recent_unfinished_job_per_kind(self, jobs, launch):
        await jobs.create(JobKind.CRAWL, {})
        newer = await jobs.create(JobKind.CRAWL, {})
        label = await jobs.create(JobKind.LABEL, {})

        recovered = await RecoveryScheduler(jobs, launch, delay=0).run()

        assert recovered == [(JobKind.CRAWL, newer.id), (JobKind.LABEL, label.id)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("final", [JobStatus.COMPLETED, JobStatus.FAILED])
    async def test_finished_jobs_are_left_alone(self, jobs, launch, final):
        job = await jobs.create(JobKind.CRAWL, {})
        await jobs.mark_running(JobKind.CRAWL, job.id)
        if final is JobStatus.COMPLETED:
            await jobs.complete(JobKind.CRAWL, job.id)
        else:
            await jobs.fail(JobKind.CRAWL, job.id, "boom")

        assert await RecoveryScheduler(jobs, launch, delay=0).run() == []
        launch.assert_not_called()
        assert await jobs.get_status(JobKind.CRAWL, job.id) is final

    @pytest.mark.asyncio
    async def test_paused_job_is_not_recovered(self, jobs, launch):
        job = await jobs.create(JobKind.CRAWL, {})
        await jobs.mark_running(JobKind.CRAWL, job.id)
        await jobs.transition(JobKind.CRAWL, job.id, JobStatus.RUNNING, JobStatus.PAUSED)

        assert await RecoveryScheduler(jobs, launch, delay=0).run() == []
        assert await jobs.get_status(JobKind.CRAWL, job.id) is JobStatus.PAUSED


class TestServiceRecovery:
    @pytest.mark.asyncio
    async def test_interrupted_crawl_runs_to_completion(
        self, session_factory, jobs, browser, listing, labeler
    ):
        listing.batches = [[card(1), card(2)]]
        job = await jobs.create(
            JobKind.CRAWL,
            {"start_url": "https://makerworld.com/zh/3d-models", "limit": 10, "max_scrolls": 2},
        )
        await jobs.mark_running(JobKind.CRAWL, job.id)
        await jobs.increment(JobKind.CRAWL, job.id, processed=7)

        service = JobService(
            session_factory=session_factory,
            open_session=browser.open_session,
            labeler=labeler,
            start_delay=0,
            recovery_delay=0,
            poll_interval=0.01,
        )
        recovered = await service.recover()
        results = await service.wait_all()

        assert recovered == [(JobKind.CRAWL, job.id)]
        assert results == [{"status": "completed", "job_id": job.id}]
        snapshot = await service.get_status(JobKind.CRAWL, job.id)
        assert snapshot.status is JobStatus.COMPLETED
        # Counters restart with the new run
        assert snapshot.processed_count == 2
        assert snapshot.discovered_or_total_count == 2
        assert await service.recover() == []
