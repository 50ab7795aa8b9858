"""
Boot-time recovery of interrupted jobs.

For each job kind, the most recently created job that never finished and
was left queued or running is reset to queued and launched again. The
relaunched run starts from its stored configuration; nothing from the
interrupted run is resumed beyond what was already persisted.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from makergrade.core.config import settings
from makergrade.models.job import JobKind
from makergrade.repositories.jobs import JobRepository

logger = logging.getLogger(__name__)

Launcher = Callable[[JobKind, str, float], "asyncio.Task[Any]"]


class RecoveryScheduler:
    """Runs once per process; later calls are no-ops."""

    def __init__(self, jobs: JobRepository, launch: Launcher, delay: float | None = None):
        self.jobs = jobs
        self.launch = launch
        self.delay = settings.RECOVERY_DELAY if delay is None else delay
        self._done = False

    async def run(self) -> list[tuple[JobKind, str]]:
        """Requeue and relaunch interrupted jobs.

        Returns:
            ``(kind, job_id)`` for every relaunched job
        """
        if self._done:
            return []
        self._done = True

        recovered: list[tuple[JobKind, str]] = []
        for kind in JobKind:
            job = await self.jobs.find_recoverable(kind)
            if job is None:
                continue
            if not await self.jobs.requeue(kind, job.id):
                continue
            self.launch(kind, job.id, self.delay)
            recovered.append((kind, job.id))
            logger.info(
                "Recovered interrupted job",
                extra={"job_id": job.id, "kind": kind.value, "previous_status": job.status.value},
            )
        return recovered
