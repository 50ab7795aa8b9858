"""
Discovery producer for crawl jobs.

Two strategies feed one per-run identity set:

1. **Network observation**: JSON/text API responses seen by the listing
   page are scanned for item URLs, plus an id/cover-image pairing
   heuristic when direct matches are scarce.
2. **Rendered DOM**: after every scroll step the rendered anchors are
   collected together with their card's cover image and title.

Every batch of new ids is persisted immediately, then queued for the
worker pool. The producer closes the queue when the discovery cap or the
scroll budget is reached.
"""

import asyncio
import logging
import re
from collections.abc import Iterable

from pydantic import ValidationError

from makergrade.core.config import settings
from makergrade.extraction.base import (
    HardBlock,
    ListingPage,
    ListingResponse,
    contains_challenge,
)
from makergrade.extraction.urls import ITEM_URL_PATTERN, SITE_ORIGIN, parse_item_url
from makergrade.jobs.control import JobControl
from makergrade.jobs.queue import WorkQueue
from makergrade.models.job import JobKind
from makergrade.observability import job_items_total
from makergrade.repositories.items import ItemRepository
from makergrade.repositories.jobs import JobRepository
from makergrade.schemas.items import DiscoveredCandidate
from makergrade.schemas.jobs import CrawlJobConfig

logger = logging.getLogger(__name__)

# Responses worth scanning
RESPONSE_URL_PATTERN = re.compile(r"api|graphql|models", re.IGNORECASE)
RESPONSE_CONTENT_TYPES = ("application/json", "text/plain")

# A numeric id followed closely by a cover-like image field
SECONDARY_PATTERN = re.compile(
    r'"id"\s*:\s*"?(?P<id>\d{4,})"?[\s\S]{0,600}?'
    r'"(?P<key>cover|coverImage|coverImageUrl|thumbnail|thumbnailUrl|image|imageUrl'
    r'|designImage|designImageUrl)"\s*:\s*"(?P<img>https?://[^"]+)"'
)

LISTING_CHALLENGE_WINDOW = 1200


def scan_reference_text(
    text: str,
    threshold: int | None = None,
    secondary_cap: int | None = None,
) -> list[DiscoveredCandidate]:
    """
    Find item references in a semi-structured response body.

    Direct item URLs are always collected. When fewer than ``threshold``
    distinct ones are found, the id/image heuristic runs as well, keeping
    pairs whose image is hosted by the site, up to ``secondary_cap`` of them.

    Returns:
        Candidates in order of appearance, distinct by id
    """
    threshold = settings.DISCOVERY_SECONDARY_THRESHOLD if threshold is None else threshold
    secondary_cap = settings.DISCOVERY_SECONDARY_CAP if secondary_cap is None else secondary_cap

    found: dict[str, DiscoveredCandidate] = {}
    for match in ITEM_URL_PATTERN.finditer(text):
        parsed = parse_item_url(match.group(0))
        if parsed and parsed[0] not in found:
            item_id, url = parsed
            found[item_id] = DiscoveredCandidate(id=item_id, url=url)

    if len(found) < threshold:
        secondary = 0
        for match in SECONDARY_PATTERN.finditer(text):
            item_id = match.group("id").strip()
            image = match.group("img").strip()
            if "makerworld" not in image.lower() or item_id in found:
                continue
            found[item_id] = DiscoveredCandidate(
                id=item_id,
                url=f"{SITE_ORIGIN}/zh/models/{item_id}",
                cover=image,
            )
            secondary += 1
            if secondary >= secondary_cap:
                break

    return list(found.values())


class CandidateRegistry:
    """
    Per-run identity set of discovered candidates.

    The first sighting of an id is kept. Later sightings only fill fields
    that are still empty; a populated field is never overwritten.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._seen: dict[str, DiscoveredCandidate] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._seen

    @property
    def full(self) -> bool:
        return len(self._seen) >= self.limit

    def admit(
        self, candidates: Iterable[DiscoveredCandidate]
    ) -> tuple[list[DiscoveredCandidate], list[DiscoveredCandidate]]:
        """
        Register a batch of sightings.

        Returns:
            ``(new, enriched)``: first sightings admitted under the cap, and
            already-known ids whose missing fields this batch filled in
        """
        new: list[DiscoveredCandidate] = []
        enriched: list[DiscoveredCandidate] = []

        for candidate in candidates:
            known = self._seen.get(candidate.id)
            if known is not None:
                if candidate.has_enrichment and self._merge(known, candidate):
                    enriched.append(known.model_copy())
                continue
            if self.full:
                continue
            self._seen[candidate.id] = candidate.model_copy()
            new.append(candidate)

        return new, enriched

    @staticmethod
    def _merge(known: DiscoveredCandidate, sighting: DiscoveredCandidate) -> bool:
        changed = False
        for field in ("cover", "title", "author"):
            if getattr(known, field) is None and getattr(sighting, field):
                setattr(known, field, getattr(sighting, field))
                changed = True
        return changed


class DiscoveryProducer:
    """Drives one listing page and streams candidates into the work queue."""

    def __init__(
        self,
        job_id: str,
        config: CrawlJobConfig,
        listing: ListingPage,
        queue: WorkQueue[DiscoveredCandidate],
        control: JobControl,
        jobs: JobRepository,
        items: ItemRepository,
    ):
        self.job_id = job_id
        self.config = config
        self.registry = CandidateRegistry(config.limit)
        self._listing = listing
        self._queue = queue
        self._control = control
        self._jobs = jobs
        self._items = items
        # Response handlers and the scroll loop both admit batches
        self._accept_lock = asyncio.Lock()

    async def open(self) -> None:
        """
        Subscribe to responses, load the listing, and check for a challenge.

        Raises:
            HardBlock: If the listing served an anti-automation challenge
        """
        self._listing.on_response(self.handle_response)
        await self._listing.open(self.config.start_url)

        text = await self._listing.visible_text()
        if contains_challenge(text, LISTING_CHALLENGE_WINDOW):
            raise HardBlock(self.config.start_url, provider="listing")

    async def run(self) -> None:
        """Scroll until the cap or scroll budget is reached, then close the queue."""
        try:
            for iteration in range(self.config.max_scrolls):
                await self._control.await_proceed()

                cards = await self._listing.collect_cards()
                await self.accept(self._cards_to_candidates(cards))

                if self.registry.full:
                    break
                await self._listing.scroll()

            logger.info(
                "Discovery finished",
                extra={
                    "job_id": self.job_id,
                    "discovered": len(self.registry),
                    "scrolls": iteration + 1,
                },
            )
        finally:
            await self._queue.close()

    async def handle_response(self, response: ListingResponse) -> None:
        """Scan an observed network response for item references."""
        if self.registry.full or self._queue.closed:
            return
        if not RESPONSE_URL_PATTERN.search(response.url):
            return
        content_type = (response.content_type or "").lower()
        if not any(ct in content_type for ct in RESPONSE_CONTENT_TYPES):
            return

        try:
            text = await response.text()
        except Exception as e:
            # Bodies of redirected or discarded responses are unreadable
            logger.debug(
                "Response body unavailable",
                extra={"job_id": self.job_id, "url": response.url, "error": str(e)},
            )
            return
        if len(text) > settings.DISCOVERY_MAX_BODY_BYTES:
            return

        await self.accept(scan_reference_text(text))

    async def accept(self, candidates: list[DiscoveredCandidate]) -> int:
        """
        Admit a batch: persist enrichment and new candidates, then queue the new ones.

        Returns:
            Number of new candidates queued
        """
        if not candidates:
            return 0

        async with self._accept_lock:
            if self._queue.closed:
                return 0
            new, enriched = self.registry.admit(candidates)

            if enriched:
                await self._items.upsert_discovered(enriched)
            if not new:
                return 0

            await self._items.upsert_discovered(new)
            await self._queue.put_many(new)
            await self._jobs.increment(JobKind.CRAWL, self.job_id, discovered=len(new))

        job_items_total.labels(kind=JobKind.CRAWL.value, outcome="discovered").inc(len(new))
        logger.debug(
            "Candidates discovered",
            extra={"job_id": self.job_id, "new": len(new), "total": len(self.registry)},
        )
        return len(new)

    def _cards_to_candidates(self, cards: list[dict]) -> list[DiscoveredCandidate]:
        candidates = []
        for card in cards:
            try:
                candidates.append(DiscoveredCandidate.model_validate(card))
            except ValidationError:
                logger.debug(
                    "Skipping malformed card",
                    extra={"job_id": self.job_id, "card": card},
                )
        return candidates
