"""
Unit tests for JobControl.

The status reader is a plain coroutine over a mutable holder so each test
decides exactly what the poller sees.
"""

import asyncio

import pytest

from makergrade.jobs.control import Cancelled, JobControl
from makergrade.models.job import JobStatus

POLL = 0.01


class StatusHolder:
    def __init__(self, status: JobStatus | None = JobStatus.RUNNING):
        self.status = status
        self.reads = 0

    async def read(self) -> JobStatus | None:
        self.reads += 1
        return self.status


@pytest.fixture
def holder():
    return StatusHolder()


class TestAwaitProceed:
    @pytest.mark.asyncio
    async def test_running_proceeds_immediately(self, holder):
        async with JobControl("crawl_1", holder.read, poll_interval=POLL) as control:
            await asyncio.wait_for(control.await_proceed(), timeout=0.5)

    @pytest.mark.asyncio
    async def test_paused_blocks_until_resumed(self, holder):
        holder.status = JobStatus.PAUSED
        async with JobControl("crawl_1", holder.read, poll_interval=POLL) as control:
            waiter = asyncio.create_task(control.await_proceed())
            await asyncio.sleep(POLL * 5)
            assert not waiter.done()

            holder.status = JobStatus.RUNNING
            await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [JobStatus.FAILED, JobStatus.COMPLETED, JobStatus.QUEUED, None],
    )
    async def test_non_live_status_cancels(self, holder, status):
        holder.status = status
        async with JobControl("crawl_1", holder.read, poll_interval=POLL) as control:
            with pytest.raises(Cancelled) as exc_info:
                await control.await_proceed()

        assert exc_info.value.status == status

    @pytest.mark.asyncio
    async def test_paused_then_cleared_cancels_waiter(self, holder):
        holder.status = JobStatus.PAUSED
        async with JobControl("crawl_1", holder.read, poll_interval=POLL) as control:
            waiter = asyncio.create_task(control.await_proceed())
            await asyncio.sleep(POLL * 3)

            holder.status = JobStatus.FAILED
            with pytest.raises(Cancelled):
                await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_status_change_is_seen_within_poll_interval(self, holder):
        async with JobControl("crawl_1", holder.read, poll_interval=POLL) as control:
            await control.await_proceed()
            holder.status = JobStatus.FAILED
            await asyncio.sleep(POLL * 5)

            assert control.is_cancelled
            with pytest.raises(Cancelled):
                await control.await_proceed()


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_releases_paused_waiters(self, holder):
        holder.status = JobStatus.PAUSED
        async with JobControl("crawl_1", holder.read, poll_interval=10) as control:
            waiters = [asyncio.create_task(control.await_proceed()) for _ in range(3)]
            await asyncio.sleep(0.01)

            await control.abort()

            results = await asyncio.gather(*waiters, return_exceptions=True)
            assert all(isinstance(r, Cancelled) for r in results)

    @pytest.mark.asyncio
    async def test_abort_cancels_even_while_running(self, holder):
        async with JobControl("crawl_1", holder.read, poll_interval=10) as control:
            await control.abort()
            with pytest.raises(Cancelled):
                await control.await_proceed()

    @pytest.mark.asyncio
    async def test_stop_ends_polling(self, holder):
        control = JobControl("crawl_1", holder.read, poll_interval=POLL)
        await control.start()
        await asyncio.sleep(POLL * 3)
        await control.stop()

        reads = holder.reads
        await asyncio.sleep(POLL * 5)
        assert holder.reads == reads
        assert control.is_cancelled


class TestPollErrors:
    @pytest.mark.asyncio
    async def test_failed_read_keeps_last_status(self):
        calls = 0

        async def flaky_read():
            nonlocal calls
            calls += 1
            if calls > 1:
                raise RuntimeError("database is locked")
            return JobStatus.RUNNING

        async with JobControl("crawl_1", flaky_read, poll_interval=POLL) as control:
            await asyncio.sleep(POLL * 5)
            assert control.status is JobStatus.RUNNING
            await asyncio.wait_for(control.await_proceed(), timeout=0.5)
