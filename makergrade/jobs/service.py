"""
Job control surface.

Creates jobs and launches their runs in the background, flips pause and
resume, reports status, and performs the maintenance operations around
runs (clear history, direct item import, stats).

All control goes through the database: a second process can pause,
resume, or inspect a job that this process is running.
"""

import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from makergrade.core.config import settings
from makergrade.core.database import AsyncSessionLocal
from makergrade.extraction.base import SessionFactory
from makergrade.jobs.crawl import CrawlJobRunner
from makergrade.jobs.label import LabelJobRunner
from makergrade.jobs.recovery import RecoveryScheduler
from makergrade.jobs.runner import JobRunner
from makergrade.labeling.base import LabelingService
from makergrade.models.job import JobKind, JobStatus
from makergrade.repositories.items import ItemRepository
from makergrade.repositories.jobs import JobRepository
from makergrade.schemas.items import ItemImportRequest
from makergrade.schemas.jobs import CrawlJobConfig, JobStatusSnapshot, LabelJobConfig

logger = logging.getLogger(__name__)

# last_error written on jobs swept by a reset
CLEARED_BY_NEW_RUN = "cleared by new run"
CLEARED_BY_IMPORT = "cleared by import"


def _default_session_factory() -> SessionFactory:
    # Playwright is only loaded when a job actually opens a browser
    from makergrade.extraction.browser import open_browser_session

    return open_browser_session


class JobService:
    """Creates, launches, and controls crawl and label jobs.

    Example:
        service = JobService()
        snapshot = await service.create_crawl_job(CrawlJobConfig(limit=50))
        await service.pause(JobKind.CRAWL, snapshot.id)
        await service.resume(JobKind.CRAWL, snapshot.id)
        await service.wait_all()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        open_session: SessionFactory | None = None,
        labeler: LabelingService | None = None,
        start_delay: float | None = None,
        recovery_delay: float | None = None,
        poll_interval: float | None = None,
    ):
        """
        Args:
            session_factory: Database session factory (defaults to the app engine)
            open_session: Browser session factory (defaults to Playwright)
            labeler: Labeling service (defaults to one built from settings)
            start_delay: Delay before a created job starts (JOB_START_DELAY)
            recovery_delay: Delay before a recovered job starts (RECOVERY_DELAY)
            poll_interval: Control poll interval passed to runners
        """
        factory = session_factory or AsyncSessionLocal
        self.jobs = JobRepository(factory)
        self.items = ItemRepository(factory)
        self.open_session = open_session or _default_session_factory()
        self._labeler = labeler
        self.start_delay = settings.JOB_START_DELAY if start_delay is None else start_delay
        self.poll_interval = poll_interval
        self.recovery = RecoveryScheduler(self.jobs, self.launch, delay=recovery_delay)
        self._tasks: set[asyncio.Task[dict[str, Any]]] = set()

    @property
    def labeler(self) -> LabelingService:
        if self._labeler is None:
            from makergrade.labeling.openai_labeler import OpenAILabelingService

            self._labeler = OpenAILabelingService.from_settings()
        return self._labeler

    # =========================================================================
    # Job creation
    # =========================================================================

    async def create_crawl_job(
        self,
        config: CrawlJobConfig | dict[str, Any] | None = None,
        clear_history: bool = True,
    ) -> JobStatusSnapshot:
        """
        Create a crawl job and launch it in the background.

        Args:
            config: Crawl configuration (validated before anything is written)
            clear_history: Reset jobs and items before creating the job

        Raises:
            pydantic.ValidationError: If the configuration is invalid
        """
        if not isinstance(config, CrawlJobConfig):
            config = CrawlJobConfig.model_validate(config or {})
        if clear_history:
            await self.clear_history(CLEARED_BY_NEW_RUN)

        job = await self.jobs.create(JobKind.CRAWL, config.model_dump())
        self.launch(JobKind.CRAWL, job.id, self.start_delay)
        return JobStatusSnapshot.model_validate(job)

    async def create_label_job(
        self,
        config: LabelJobConfig | dict[str, Any] | None = None,
    ) -> JobStatusSnapshot:
        """
        Create a label job and launch it in the background.

        Raises:
            pydantic.ValidationError: If the configuration is invalid
        """
        if not isinstance(config, LabelJobConfig):
            config = LabelJobConfig.model_validate(config or {})

        job = await self.jobs.create(JobKind.LABEL, config.model_dump())
        self.launch(JobKind.LABEL, job.id, self.start_delay)
        return JobStatusSnapshot.model_validate(job)

    # =========================================================================
    # Control
    # =========================================================================

    async def pause(self, kind: JobKind, job_id: str) -> bool:
        """Flip ``running -> paused``; False if the job is in any other state."""
        return await self._flip(kind, job_id, JobStatus.RUNNING, JobStatus.PAUSED)

    async def resume(self, kind: JobKind, job_id: str) -> bool:
        """Flip ``paused -> running``; False if the job is in any other state."""
        return await self._flip(kind, job_id, JobStatus.PAUSED, JobStatus.RUNNING)

    async def get_status(self, kind: JobKind, job_id: str) -> JobStatusSnapshot:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        return JobStatusSnapshot.model_validate(await self.jobs.require(kind, job_id))

    async def latest(self, kind: JobKind) -> JobStatusSnapshot | None:
        job = await self.jobs.latest(kind)
        return JobStatusSnapshot.model_validate(job) if job else None

    async def _flip(
        self,
        kind: JobKind,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
    ) -> bool:
        if await self.jobs.transition(kind, job_id, from_status, to_status):
            logger.info(
                "Job status changed",
                extra={"job_id": job_id, "from": from_status.value, "to": to_status.value},
            )
            return True

        job = await self.jobs.require(kind, job_id)
        logger.info(
            "Job status change ignored",
            extra={
                "job_id": job_id,
                "status": job.status.value,
                "requested": to_status.value,
            },
        )
        return False

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def clear_history(self, reason: str = CLEARED_BY_NEW_RUN) -> int:
        """
        Fail every unfinished job and delete all items, images, and labels.

        Running loops observe their job leaving the live states and stop.

        Returns:
            Number of jobs that were failed
        """
        swept = await self.jobs.fail_unfinished(reason)
        await self.items.clear_all()
        logger.info("History cleared", extra={"jobs_failed": swept, "reason": reason})
        return swept

    async def import_items(self, request: ItemImportRequest | dict[str, Any]) -> list[str]:
        """
        Scrape item pages directly and store them, without a job.

        Raises:
            pydantic.ValidationError: If the request is invalid
            ExtractionError: If any page fails to scrape (earlier pages stay stored)
        """
        if not isinstance(request, ItemImportRequest):
            request = ItemImportRequest.model_validate(request)
        if request.clear_history:
            await self.clear_history(CLEARED_BY_IMPORT)

        ids: list[str] = []
        session = await self.open_session(request.cookie_header)
        try:
            for url in request.urls:
                scraped = await session.extractor.extract(url)
                await self.items.apply_scraped(scraped)
                ids.append(scraped.id)
        finally:
            await session.close()

        logger.info("Items imported", extra={"count": len(ids)})
        return ids

    async def stats(self) -> dict[str, Any]:
        return await self.items.stats()

    # =========================================================================
    # Execution
    # =========================================================================

    def runner_for(self, kind: JobKind, job_id: str) -> JobRunner:
        if kind is JobKind.CRAWL:
            return CrawlJobRunner(
                job_id, self.jobs, self.items, self.open_session, poll_interval=self.poll_interval
            )
        return LabelJobRunner(
            job_id,
            self.jobs,
            self.items,
            self.open_session,
            poll_interval=self.poll_interval,
            labeler=self.labeler,
        )

    def launch(self, kind: JobKind, job_id: str, delay: float) -> "asyncio.Task[dict[str, Any]]":
        """Run a job in the background after ``delay`` seconds."""
        task = asyncio.create_task(self._run_after(kind, job_id, delay), name=job_id)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _run_after(self, kind: JobKind, job_id: str, delay: float) -> dict[str, Any]:
        await asyncio.sleep(delay)
        return await self.runner_for(kind, job_id).run()

    def _on_task_done(self, task: "asyncio.Task[dict[str, Any]]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Job task crashed",
                extra={"job_id": task.get_name(), "error": str(error)},
                exc_info=error,
            )

    async def recover(self) -> list[tuple[JobKind, str]]:
        """Requeue and relaunch interrupted jobs (once per process)."""
        return await self.recovery.run()

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    async def wait_all(self) -> list[dict[str, Any]]:
        """Wait for every launched job run, including ones launched meanwhile."""
        results: list[dict[str, Any]] = []
        seen: set[asyncio.Task[dict[str, Any]]] = set()
        while pending := [t for t in self._tasks if t not in seen]:
            seen.update(pending)
            done = await asyncio.gather(*pending, return_exceptions=True)
            results.extend(r for r in done if isinstance(r, dict))
        return results

    async def shutdown(self) -> None:
        """Cancel in-flight runs; their jobs stay recoverable."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
