"""
Shared execution lifecycle for crawl and label jobs.

A runner loads its job, flips it ``queued -> running``, executes the
pipeline under a :class:`JobControl`, and writes the terminal status:

- pipeline returned: ``completed`` (only if the job is still live)
- ``HardBlock`` escaped the pipeline: ``failed`` with ``"hard block"``
- any other exception: ``failed`` with the exception text
- ``Cancelled``: nothing is written; whoever changed the status wins
"""

import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any

from makergrade.core.config import settings
from makergrade.extraction.base import HARD_BLOCK_ERROR, HardBlock, SessionFactory
from makergrade.jobs.control import Cancelled, JobControl
from makergrade.models.job import JobKind, JobRecord
from makergrade.observability import job_items_total, job_runs_total, tracer
from makergrade.repositories.items import ItemRepository
from makergrade.repositories.jobs import JobRepository

logger = logging.getLogger(__name__)


class JobRunner(ABC):
    """Base class for a single job execution."""

    kind: JobKind

    def __init__(
        self,
        job_id: str,
        jobs: JobRepository,
        items: ItemRepository,
        open_session: SessionFactory,
        poll_interval: float | None = None,
    ):
        """
        Args:
            job_id: Job to execute
            jobs: Job persistence
            items: Item persistence
            open_session: Opens a browser session for a cookie header
            poll_interval: Control poll interval (defaults to CONTROL_POLL_INTERVAL)
        """
        self.job_id = job_id
        self.jobs = jobs
        self.items = items
        self.open_session = open_session
        self.poll_interval = (
            settings.CONTROL_POLL_INTERVAL if poll_interval is None else poll_interval
        )
        # Set once the job itself has written a fatal failure
        self.fatal_error: str | None = None

    @abstractmethod
    async def execute(self, job: JobRecord, control: JobControl) -> None:
        """Run the pipeline. Must call ``control.await_proceed()`` before each unit."""

    async def run(self) -> dict[str, Any]:
        """
        Execute the job end to end.

        Returns:
            dict: ``{"status": completed|failed|cancelled|skipped, "job_id": ...}``
        """
        job = await self.jobs.get(self.kind, self.job_id)
        if job is None:
            logger.warning(
                "Job not found, nothing to run",
                extra={"job_id": self.job_id, "kind": self.kind.value},
            )
            return {"status": "skipped", "job_id": self.job_id}

        if not await self.jobs.mark_running(self.kind, self.job_id):
            logger.warning(
                "Job not queued, skipping run",
                extra={"job_id": self.job_id, "status": job.status.value},
            )
            return {"status": "skipped", "job_id": self.job_id}

        logger.info(
            "Starting job",
            extra={"job_id": self.job_id, "kind": self.kind.value, "config": job.config},
        )

        with tracer.start_as_current_span(f"{self.kind.value}_job.run") as span:
            span.set_attribute("job.id", self.job_id)
            result = await self._run_controlled(job)
            span.set_attribute("job.result", result)

        job_runs_total.labels(kind=self.kind.value, result=result).inc()
        return {"status": result, "job_id": self.job_id}

    async def _run_controlled(self, job: JobRecord) -> str:
        control = JobControl(
            self.job_id,
            partial(self.jobs.get_status, self.kind, self.job_id),
            poll_interval=self.poll_interval,
        )
        try:
            await control.start()
            await self.execute(job, control)
        except Cancelled as e:
            if self.fatal_error:
                return "failed"
            logger.info(
                "Job cancelled externally",
                extra={"job_id": self.job_id, "observed_status": str(e)},
            )
            return "cancelled"
        except HardBlock as e:
            await self.record_fatal(HARD_BLOCK_ERROR, control)
            logger.warning(
                "Job aborted by challenge page",
                extra={"job_id": self.job_id, "error": str(e)},
            )
            return "failed"
        except Exception as e:
            logger.exception(
                "Job failed",
                extra={"job_id": self.job_id, "error": str(e)},
            )
            await self.jobs.fail(self.kind, self.job_id, str(e) or type(e).__name__)
            return "failed"
        finally:
            await control.stop()

        if self.fatal_error:
            return "failed"
        if await self.jobs.complete(self.kind, self.job_id):
            final = await self.jobs.get(self.kind, self.job_id)
            logger.info(
                "Job completed",
                extra={
                    "job_id": self.job_id,
                    "processed_count": final.processed_count if final else None,
                    "failed_count": final.failed_count if final else None,
                },
            )
            return "completed"
        return "cancelled"

    async def record_fatal(self, error: str, control: JobControl) -> None:
        """Fail the job and stop every worker at its next check."""
        if self.fatal_error is None:
            self.fatal_error = error
            await self.jobs.fail(self.kind, self.job_id, error)
        await control.abort()

    async def record_item_failure(self, item_id: str, error: Exception) -> None:
        """Count a non-fatal item failure; the message becomes ``last_error``."""
        message = str(error) or type(error).__name__
        await self.jobs.increment(self.kind, self.job_id, failed=1, last_error=message)
        job_items_total.labels(kind=self.kind.value, outcome="failed").inc()
        logger.warning(
            "Item failed",
            extra={"job_id": self.job_id, "item_id": item_id, "error": message},
        )

    async def record_item_success(self, item_id: str) -> None:
        await self.jobs.increment(self.kind, self.job_id, processed=1)
        job_items_total.labels(kind=self.kind.value, outcome="processed").inc()
        logger.debug("Item processed", extra={"job_id": self.job_id, "item_id": item_id})
