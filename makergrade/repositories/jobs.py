"""
Repository for crawl and label job records.

Every method runs in its own short transaction: job rows are written by
several concurrent workers and read by out-of-process pollers, so no
session is held across a unit of work. Counter changes are single
``UPDATE ... SET c = c + n`` statements and terminal writes are
conditional on the job still being live, so a concurrent external
status change is never overwritten.
"""

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from makergrade.core.database import utcnow
from makergrade.models.job import (
    JOB_MODELS,
    LIVE_STATUSES,
    RECOVERABLE_STATUSES,
    TERMINAL_STATUSES,
    CrawlJob,
    JobKind,
    JobRecord,
    JobStatus,
    LabelJob,
    new_job_id,
)

logger = logging.getLogger(__name__)


class JobNotFoundError(Exception):
    """Raised when a job id does not exist for the given kind."""

    def __init__(self, kind: JobKind, job_id: str):
        self.kind = kind
        self.job_id = job_id
        super().__init__(f"{kind.value} job {job_id} not found")


class JobRepository:
    """Persistence for job lifecycle, counters, and recovery queries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize repository.

        Args:
            session_factory: Factory producing one session per operation
        """
        self._session_factory = session_factory

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, kind: JobKind, job_id: str) -> JobRecord | None:
        """Get a job by id."""
        model = JOB_MODELS[kind]
        async with self._session_factory() as session:
            return await session.get(model, job_id)

    async def require(self, kind: JobKind, job_id: str) -> JobRecord:
        """Get a job by id, raising if it does not exist."""
        job = await self.get(kind, job_id)
        if job is None:
            raise JobNotFoundError(kind, job_id)
        return job

    async def get_status(self, kind: JobKind, job_id: str) -> JobStatus | None:
        """Read only the status column; None if the row is gone."""
        model = JOB_MODELS[kind]
        async with self._session_factory() as session:
            result = await session.execute(select(model.status).where(model.id == job_id))
            return result.scalar_one_or_none()

    async def latest(self, kind: JobKind) -> JobRecord | None:
        """Most recently created job of a kind."""
        model = JOB_MODELS[kind]
        async with self._session_factory() as session:
            result = await session.execute(
                select(model).order_by(model.created_at.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    async def find_recoverable(self, kind: JobKind) -> JobRecord | None:
        """Most recent unfinished job of a kind left queued or running."""
        model = JOB_MODELS[kind]
        async with self._session_factory() as session:
            result = await session.execute(
                select(model)
                .where(
                    model.finished_at.is_(None),
                    model.status.in_(RECOVERABLE_STATUSES),
                )
                .order_by(model.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    # =========================================================================
    # Lifecycle writes
    # =========================================================================

    async def create(self, kind: JobKind, config: dict[str, Any]) -> JobRecord:
        """Insert a new queued job and return it."""
        model = JOB_MODELS[kind]
        job = model(id=new_job_id(kind), status=JobStatus.QUEUED, config=config)
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)
        logger.info("Job created", extra={"job_id": job.id, "kind": kind.value})
        return job

    async def mark_running(self, kind: JobKind, job_id: str) -> bool:
        """
        Start a run: ``queued -> running``.

        Clears the previous error and resets the run counters. Returns False
        if the job is gone or no longer queued (e.g. cleared before start).
        """
        model = JOB_MODELS[kind]
        values: dict[str, Any] = {
            "status": JobStatus.RUNNING,
            "started_at": utcnow(),
            "finished_at": None,
            "last_error": None,
            "processed_count": 0,
            "failed_count": 0,
        }
        if model is CrawlJob:
            values["discovered_count"] = 0
        return await self._conditional_update(
            model, job_id, (JobStatus.QUEUED,), values
        )

    async def transition(
        self,
        kind: JobKind,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
    ) -> bool:
        """Flip status only if the job is currently in ``from_status``."""
        return await self._conditional_update(
            JOB_MODELS[kind], job_id, (from_status,), {"status": to_status}
        )

    async def complete(self, kind: JobKind, job_id: str) -> bool:
        """Mark a live job completed. No-op if it was cancelled externally."""
        return await self._conditional_update(
            JOB_MODELS[kind],
            job_id,
            LIVE_STATUSES,
            {"status": JobStatus.COMPLETED, "finished_at": utcnow()},
        )

    async def fail(self, kind: JobKind, job_id: str, error: str) -> bool:
        """Mark a live job failed. No-op if it was cancelled externally."""
        return await self._conditional_update(
            JOB_MODELS[kind],
            job_id,
            LIVE_STATUSES,
            {
                "status": JobStatus.FAILED,
                "finished_at": utcnow(),
                "last_error": error,
            },
        )

    async def requeue(self, kind: JobKind, job_id: str) -> bool:
        """Reset an interrupted job to queued for recovery."""
        return await self._conditional_update(
            JOB_MODELS[kind],
            job_id,
            RECOVERABLE_STATUSES,
            {"status": JobStatus.QUEUED},
        )

    async def fail_unfinished(self, reason: str) -> int:
        """
        Fail every unfinished job of both kinds.

        Used by clear-history; returns the number of jobs affected.
        """
        now = utcnow()
        affected = 0
        async with self._session_factory() as session:
            for model in JOB_MODELS.values():
                result = await session.execute(
                    update(model)
                    .where(model.status.notin_(TERMINAL_STATUSES))
                    .values(status=JobStatus.FAILED, finished_at=now, last_error=reason)
                    .execution_options(synchronize_session=False)
                )
                affected += result.rowcount or 0
            await session.commit()
        return affected

    # =========================================================================
    # Counters
    # =========================================================================

    async def increment(
        self,
        kind: JobKind,
        job_id: str,
        *,
        processed: int = 0,
        failed: int = 0,
        discovered: int = 0,
        last_error: str | None = None,
    ) -> None:
        """
        Atomically add to the job's counters.

        ``discovered`` applies to crawl jobs only. When ``last_error`` is
        given it replaces the stored error in the same statement.
        """
        model = JOB_MODELS[kind]
        values: dict[str, Any] = {}
        if processed:
            values["processed_count"] = model.processed_count + processed
        if failed:
            values["failed_count"] = model.failed_count + failed
        if discovered:
            if model is not CrawlJob:
                raise ValueError("discovered_count only exists on crawl jobs")
            values["discovered_count"] = CrawlJob.discovered_count + discovered
        if last_error is not None:
            values["last_error"] = last_error
        if not values:
            return

        async with self._session_factory() as session:
            await session.execute(
                update(model)
                .where(model.id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def set_total(self, job_id: str, total: int) -> None:
        """Fix a label job's candidate total at run start."""
        async with self._session_factory() as session:
            await session.execute(
                update(LabelJob)
                .where(LabelJob.id == job_id)
                .values(total_count=total)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _conditional_update(
        self,
        model: type[CrawlJob] | type[LabelJob],
        job_id: str,
        allowed: tuple[JobStatus, ...],
        values: dict[str, Any],
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(model)
                .where(model.id == job_id, model.status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        changed = bool(result.rowcount)
        if not changed:
            logger.debug(
                "Conditional job update skipped",
                extra={
                    "job_id": job_id,
                    "allowed": [s.value for s in allowed],
                    "target": values.get("status"),
                },
            )
        return changed
