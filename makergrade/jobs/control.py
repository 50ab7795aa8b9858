"""
Cooperative pause/cancel control for a running job.

One background poller per job reads the persisted status every
``CONTROL_POLL_INTERVAL`` seconds and publishes it to the job's workers.
Workers call :meth:`JobControl.await_proceed` before each unit of work:

- ``running``: return immediately
- ``paused``: block until the status changes
- anything else, or the row is gone: raise :class:`Cancelled`

Work already in flight is never interrupted; the reaction latency is at
most one poll interval. Pause, resume, and cancel are all driven through
the database, so they can be issued from another process.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from makergrade.models.job import LIVE_STATUSES, JobStatus

logger = logging.getLogger(__name__)

StatusReader = Callable[[], Awaitable[JobStatus | None]]


class Cancelled(Exception):
    """The job's record vanished or left running/paused; unwind without writing."""

    def __init__(self, job_id: str, status: JobStatus | None = None):
        self.job_id = job_id
        self.status = status
        observed = status.value if status is not None else "missing"
        super().__init__(f"job {job_id} cancelled (status: {observed})")


class JobControl:
    """
    Cancellation token for one job run, fed by a status poller.

    Usage:
        async with JobControl(job_id, read_status, poll_interval=1.0) as control:
            await control.await_proceed()
            ...
    """

    def __init__(
        self,
        job_id: str,
        read_status: StatusReader,
        poll_interval: float = 1.0,
    ):
        self.job_id = job_id
        self._read_status = read_status
        self._poll_interval = poll_interval
        self._status: JobStatus | None = JobStatus.RUNNING
        self._aborted = False
        self._changed = asyncio.Condition()
        self._poller: asyncio.Task | None = None

    @property
    def status(self) -> JobStatus | None:
        """Last published status."""
        return self._status

    @property
    def is_cancelled(self) -> bool:
        return self._aborted or self._status not in LIVE_STATUSES

    async def start(self) -> None:
        """Publish the current status and start polling."""
        await self._publish(await self._read_status())
        self._poller = asyncio.create_task(
            self._poll(), name=f"job-control-{self.job_id}"
        )

    async def stop(self) -> None:
        """Stop polling. Blocked waiters are released as cancelled."""
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None
        await self.abort()

    async def __aenter__(self) -> "JobControl":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def await_proceed(self) -> None:
        """
        Block while paused; return when running.

        Raises:
            Cancelled: If the job was aborted, left running/paused, or deleted
        """
        async with self._changed:
            await self._changed.wait_for(
                lambda: self._aborted or self._status is not JobStatus.PAUSED
            )
        if self.is_cancelled:
            raise Cancelled(self.job_id, self._status)

    async def abort(self) -> None:
        """Trip the token locally so every worker stops at its next check."""
        async with self._changed:
            self._aborted = True
            self._changed.notify_all()

    async def _publish(self, status: JobStatus | None) -> None:
        async with self._changed:
            if status != self._status:
                logger.debug(
                    "Job status changed",
                    extra={
                        "job_id": self.job_id,
                        "status": status.value if status is not None else None,
                    },
                )
            self._status = status
            self._changed.notify_all()

    async def _poll(self) -> None:
        while not self.is_cancelled:
            await asyncio.sleep(self._poll_interval)
            try:
                status = await self._read_status()
            except Exception as e:
                # Keep the last known status; the next poll retries
                logger.warning(
                    "Job status poll failed",
                    extra={"job_id": self.job_id, "error": str(e)},
                )
                continue
            await self._publish(status)
