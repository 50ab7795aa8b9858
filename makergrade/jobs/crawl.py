"""
Crawl job: discover items on a listing page and scrape each one.

The discovery producer and a pool of 1-5 workers share one browser
session. Workers pull candidates from the work queue, scrape them with
the page extractor, and persist the result:

- success: item upserted, images replaced, ``processed_count += 1``
- ``HardBlock``: job failed with ``"hard block"``, every worker stops
- any other error: ``failed_count += 1``, ``last_error`` set, next item

Failed items are not retried within the run.
"""

import asyncio
import logging

from makergrade.extraction.base import HARD_BLOCK_ERROR, HardBlock, PageExtractor
from makergrade.jobs.control import Cancelled, JobControl
from makergrade.jobs.discovery import DiscoveryProducer
from makergrade.jobs.queue import WorkQueue
from makergrade.jobs.runner import JobRunner
from makergrade.models.job import CrawlJob, JobKind
from makergrade.observability import active_workers, tracer
from makergrade.schemas.items import DiscoveredCandidate
from makergrade.schemas.jobs import CrawlJobConfig

logger = logging.getLogger(__name__)


class CrawlJobRunner(JobRunner):
    """Runs one crawl job from its stored configuration."""

    kind = JobKind.CRAWL

    async def execute(self, job: CrawlJob, control: JobControl) -> None:
        config = CrawlJobConfig.model_validate(job.config)
        session = await self.open_session(config.cookie_header)
        try:
            await self._crawl(config, session, control)
        finally:
            await session.close()

    async def _crawl(self, config: CrawlJobConfig, session, control: JobControl) -> None:
        queue: WorkQueue[DiscoveredCandidate] = WorkQueue()
        listing = await session.open_listing()
        producer = DiscoveryProducer(
            self.job_id, config, listing, queue, control, self.jobs, self.items
        )

        try:
            await producer.open()
        except BaseException:
            await listing.close()
            raise

        workers = [
            asyncio.create_task(
                self._worker(n, config, session.extractor, queue, control),
                name=f"{self.job_id}-worker-{n}",
            )
            for n in range(config.concurrency)
        ]

        try:
            await producer.run()
        except Cancelled:
            raise
        except BaseException:
            # Discovery broke; stop the pool instead of draining the queue
            await control.abort()
            raise
        finally:
            await listing.close()
            results = await asyncio.gather(*workers, return_exceptions=True)

        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _worker(
        self,
        n: int,
        config: CrawlJobConfig,
        extractor: PageExtractor,
        queue: WorkQueue[DiscoveredCandidate],
        control: JobControl,
    ) -> None:
        active_workers.labels(kind=self.kind.value).inc()
        try:
            while True:
                await control.await_proceed()
                candidate = await queue.take()
                if candidate is None:
                    return
                # Hold a dequeued item while paused rather than dropping it
                await control.await_proceed()

                try:
                    await self._scrape(candidate, extractor)
                except HardBlock as e:
                    logger.warning(
                        "Challenge page while scraping, aborting job",
                        extra={"job_id": self.job_id, "item_id": candidate.id, "error": str(e)},
                    )
                    await self.record_fatal(HARD_BLOCK_ERROR, control)
                    return

                if config.delay_ms > 0:
                    await asyncio.sleep(config.delay_ms / 1000)
        except Cancelled:
            logger.debug("Worker stopped", extra={"job_id": self.job_id, "worker": n})
        finally:
            active_workers.labels(kind=self.kind.value).dec()

    async def _scrape(self, candidate: DiscoveredCandidate, extractor: PageExtractor) -> None:
        with tracer.start_as_current_span("crawl_job.item") as span:
            span.set_attribute("job.id", self.job_id)
            span.set_attribute("item.id", candidate.id)
            try:
                scraped = await extractor.extract(candidate.url)
                # Keep the discovered row even if the page redirected
                await self.items.apply_scraped(scraped.model_copy(update={"id": candidate.id}))
            except HardBlock:
                raise
            except Exception as e:
                span.set_attribute("item.outcome", "failed")
                await self.record_item_failure(candidate.id, e)
                return

            span.set_attribute("item.outcome", "processed")
            await self.record_item_success(candidate.id)
