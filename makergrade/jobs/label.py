"""
Label job: grade every item that has no label yet.

Candidates are selected once at job start (most recently updated first,
optionally capped) and processed one at a time. Items with fewer than two
stored images are re-scraped before grading. Every failure is per-item:
it is counted and the job moves on.
"""

import logging

from makergrade.extraction.base import BrowserSessionProtocol, PageExtractor
from makergrade.jobs.control import JobControl
from makergrade.jobs.runner import JobRunner
from makergrade.labeling.base import LabelingService
from makergrade.models.item import Item
from makergrade.models.job import JobKind, LabelJob
from makergrade.observability import active_workers, tracer
from makergrade.schemas.jobs import LabelJobConfig

logger = logging.getLogger(__name__)

# Stored images needed to grade without re-scraping
MIN_STORED_IMAGES = 2


class LabelJobRunner(JobRunner):
    """Runs one label job from its stored configuration."""

    kind = JobKind.LABEL

    def __init__(self, *args, labeler: LabelingService, **kwargs):
        super().__init__(*args, **kwargs)
        self.labeler = labeler
        self._session: BrowserSessionProtocol | None = None

    async def execute(self, job: LabelJob, control: JobControl) -> None:
        config = LabelJobConfig.model_validate(job.config)
        candidates = await self.items.select_unlabeled(config.limit)
        await self.jobs.set_total(self.job_id, len(candidates))
        logger.info(
            "Label candidates selected",
            extra={"job_id": self.job_id, "total_count": len(candidates), "limit": config.limit},
        )

        active_workers.labels(kind=self.kind.value).inc()
        try:
            for item in candidates:
                await control.await_proceed()
                await self._label(item)
        finally:
            active_workers.labels(kind=self.kind.value).dec()
            if self._session is not None:
                await self._session.close()
                self._session = None

    async def _label(self, item: Item) -> None:
        with tracer.start_as_current_span("label_job.item") as span:
            span.set_attribute("job.id", self.job_id)
            span.set_attribute("item.id", item.id)
            try:
                image_urls = await self._images_for(item)
                result = await self.labeler.label(item.url, image_urls)
                await self.items.save_label(
                    item.id,
                    result.grade,
                    result.reason,
                    result.extracted.model_dump(),
                )
            except Exception as e:
                span.set_attribute("item.outcome", "failed")
                await self.record_item_failure(item.id, e)
                return

            span.set_attribute("item.outcome", "processed")
            await self.record_item_success(item.id)

    async def _images_for(self, item: Item) -> list[str]:
        """Stored images, or a fresh scrape when fewer than two are stored."""
        image_urls = await self.items.image_urls(item.id)
        if not image_urls and item.cover_image:
            image_urls = [item.cover_image]
        if len(image_urls) >= MIN_STORED_IMAGES:
            return image_urls

        extractor = await self._extractor()
        scraped = await extractor.extract(item.url)
        # Keep the row identity even if the page redirected
        scraped = scraped.model_copy(update={"id": item.id})
        await self.items.apply_scraped(scraped)
        return scraped.image_urls

    async def _extractor(self) -> PageExtractor:
        """Open the browser on first use, reusing the latest crawl's cookie."""
        if self._session is None:
            self._session = await self.open_session(await self._crawl_cookie())
        return self._session.extractor

    async def _crawl_cookie(self) -> str | None:
        latest = await self.jobs.latest(JobKind.CRAWL)
        if latest is None:
            return None
        cookie = (latest.config or {}).get("cookie_header")
        return cookie if isinstance(cookie, str) and cookie else None
