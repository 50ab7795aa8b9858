"""
Unit tests for discovery: response scanning, the candidate registry, and
the producer driving a fake listing page.
"""

from functools import partial

import pytest

from makergrade.core.config import settings
from makergrade.extraction.base import HardBlock
from makergrade.jobs.control import JobControl
from makergrade.jobs.discovery import CandidateRegistry, DiscoveryProducer, scan_reference_text
from makergrade.jobs.queue import WorkQueue
from makergrade.models.job import JobKind
from makergrade.schemas.items import DiscoveredCandidate
from makergrade.schemas.jobs import CrawlJobConfig
from tests.fakes import FakeListingPage, FakeResponse, card, item_url


# =============================================================================
# scan_reference_text
# =============================================================================


class TestScanReferenceText:
    def test_direct_urls_are_distinct_by_id(self):
        text = (
            '{"items":[{"link":"https://makerworld.com/zh/models/1001"},'
            '{"link":"https://makerworld.com/en/models/1001#comments"},'
            '{"link":"https://makerworld.com/en/models/1002"}]}'
        )

        found = scan_reference_text(text, threshold=0)

        assert [c.id for c in found] == ["1001", "1002"]
        assert found[0].url == "https://makerworld.com/zh/models/1001"
        assert found[1].url == "https://makerworld.com/en/models/1002"

    def test_secondary_pairs_id_with_site_image(self):
        text = (
            '{"hits":[{"id": 245871, "title": "Cable clip",'
            ' "cover": "https://makerworld.bblmw.com/makerworld/model/245871/cover.jpg"}]}'
        )

        found = scan_reference_text(text, threshold=20)

        assert len(found) == 1
        assert found[0].id == "245871"
        assert found[0].url == "https://makerworld.com/zh/models/245871"
        assert found[0].cover == "https://makerworld.bblmw.com/makerworld/model/245871/cover.jpg"

    def test_secondary_ignores_foreign_images(self):
        text = '{"id": "245871", "thumbnail": "https://cdn.example.com/245871.jpg"}'

        assert scan_reference_text(text, threshold=20) == []

    def test_secondary_skipped_when_direct_matches_suffice(self):
        text = (
            '{"link":"https://makerworld.com/zh/models/1001"},'
            '{"id": 245871, "cover": "https://makerworld.bblmw.com/x.jpg"}'
        )

        found = scan_reference_text(text, threshold=1)

        assert [c.id for c in found] == ["1001"]

    def test_secondary_matches_are_capped(self):
        text = ",".join(
            f'{{"id": {n}, "imageUrl": "https://makerworld.bblmw.com/{n}.jpg"}}'
            for n in range(5001, 5006)
        )

        found = scan_reference_text(text, threshold=20, secondary_cap=2)

        assert [c.id for c in found] == ["5001", "5002"]

    def test_no_references(self):
        assert scan_reference_text('{"ok": true}') == []


# =============================================================================
# CandidateRegistry
# =============================================================================


def candidate(item_id: str, **fields) -> DiscoveredCandidate:
    return DiscoveredCandidate(id=item_id, url=item_url(item_id), **fields)


class TestCandidateRegistry:
    def test_admits_each_id_once(self):
        registry = CandidateRegistry(limit=10)

        new, _ = registry.admit([candidate("1"), candidate("2"), candidate("1")])
        again, _ = registry.admit([candidate("2"), candidate("3")])

        assert [c.id for c in new] == ["1", "2"]
        assert [c.id for c in again] == ["3"]
        assert len(registry) == 3
        assert "2" in registry

    def test_cap_is_never_exceeded(self):
        registry = CandidateRegistry(limit=2)

        new, _ = registry.admit([candidate(str(n)) for n in range(5)])

        assert [c.id for c in new] == ["0", "1"]
        assert registry.full

    def test_later_sighting_fills_missing_fields_only(self):
        registry = CandidateRegistry(limit=10)
        registry.admit([candidate("1", title="Hook")])

        _, enriched = registry.admit(
            [candidate("1", title="Other title", cover="https://makerworld.bblmw.com/1.jpg")]
        )

        assert len(enriched) == 1
        assert enriched[0].title == "Hook"
        assert enriched[0].cover == "https://makerworld.bblmw.com/1.jpg"

    def test_sighting_without_new_fields_is_not_enrichment(self):
        registry = CandidateRegistry(limit=10)
        registry.admit([candidate("1", title="Hook")])

        _, enriched = registry.admit([candidate("1", title="Hook again")])

        assert enriched == []

    def test_bare_resighting_is_not_enrichment(self):
        registry = CandidateRegistry(limit=10)
        registry.admit([candidate("1")])

        _, enriched = registry.admit([candidate("1")])

        assert enriched == []
        assert not candidate("1").has_enrichment
        assert candidate("1", author="maker").has_enrichment

    def test_known_ids_enrich_even_when_full(self):
        registry = CandidateRegistry(limit=1)
        registry.admit([candidate("1")])

        new, enriched = registry.admit([candidate("1", title="Hook"), candidate("2")])

        assert new == []
        assert [c.id for c in enriched] == ["1"]


# =============================================================================
# DiscoveryProducer
# =============================================================================


async def drain(queue: WorkQueue) -> list[str]:
    ids = []
    while (c := await queue.take()) is not None:
        ids.append(c.id)
    return ids


@pytest.fixture
def crawl_job(jobs):
    async def make(**config):
        cfg = CrawlJobConfig(start_url="https://makerworld.com/zh/3d-models", **config)
        job = await jobs.create(JobKind.CRAWL, cfg.model_dump())
        await jobs.mark_running(JobKind.CRAWL, job.id)
        return job.id, cfg

    return make


@pytest.fixture
def make_producer(jobs, items):
    def make(job_id: str, config: CrawlJobConfig, listing: FakeListingPage, control: JobControl):
        queue: WorkQueue[DiscoveredCandidate] = WorkQueue()
        producer = DiscoveryProducer(job_id, config, listing, queue, control, jobs, items)
        return producer, queue

    return make


def control_for(jobs, job_id: str) -> JobControl:
    return JobControl(job_id, partial(jobs.get_status, JobKind.CRAWL, job_id), poll_interval=0.01)


class TestDiscoveryProducer:
    @pytest.mark.asyncio
    async def test_dom_cards_are_deduplicated_and_persisted(
        self, jobs, items, crawl_job, make_producer
    ):
        job_id, config = await crawl_job(limit=10, max_scrolls=5)
        listing = FakeListingPage(
            batches=[
                [card(1001, title="Hook"), card(1002)],
                [card(1002), card(1003, cover="https://makerworld.bblmw.com/1003.jpg")],
            ]
        )

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert queue.closed
        assert await drain(queue) == ["1001", "1002", "1003"]

        job = await jobs.get(JobKind.CRAWL, job_id)
        assert job.discovered_count == 3
        assert (await items.get("1001")).title == "Hook"
        assert (await items.get("1003")).cover_image == "https://makerworld.bblmw.com/1003.jpg"
        assert listing.opened_url == "https://makerworld.com/zh/3d-models"

    @pytest.mark.asyncio
    async def test_responses_and_dom_share_one_identity_set(
        self, jobs, crawl_job, make_producer
    ):
        job_id, config = await crawl_job(limit=10, max_scrolls=2)
        listing = FakeListingPage(
            batches=[[card(1001), card(2002)]],
            responses=[
                FakeResponse(
                    url="https://makerworld.com/api/v1/design-service/list",
                    body='{"hits":["https://makerworld.com/en/models/2002",'
                    '"https://makerworld.com/zh/models/2003"]}',
                ),
            ],
        )

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert await drain(queue) == ["2002", "2003", "1001"]
        assert (await jobs.get(JobKind.CRAWL, job_id)).discovered_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            FakeResponse(url="https://makerworld.com/static/app.js", body=item_url(3001)),
            FakeResponse(
                url="https://makerworld.com/api/feed",
                body=item_url(3001),
                content_type="text/html",
            ),
        ],
    )
    async def test_irrelevant_responses_are_ignored(
        self, jobs, crawl_job, make_producer, response
    ):
        job_id, config = await crawl_job(limit=10, max_scrolls=1)
        listing = FakeListingPage(responses=[response])

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert await drain(queue) == []

    @pytest.mark.asyncio
    async def test_oversized_bodies_are_skipped(
        self, jobs, crawl_job, make_producer, monkeypatch
    ):
        monkeypatch.setattr(settings, "DISCOVERY_MAX_BODY_BYTES", 10)
        job_id, config = await crawl_job(limit=10, max_scrolls=1)
        listing = FakeListingPage(
            responses=[FakeResponse(url="https://makerworld.com/api/feed", body=item_url(3001))]
        )

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert await drain(queue) == []

    @pytest.mark.asyncio
    async def test_stops_scrolling_once_cap_is_reached(
        self, jobs, crawl_job, make_producer
    ):
        job_id, config = await crawl_job(limit=2, max_scrolls=10)
        listing = FakeListingPage(batches=[[card(1), card(2), card(3)], [card(4)]])

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert await drain(queue) == ["1", "2"]
        assert listing.scrolls == 0

    @pytest.mark.asyncio
    async def test_scroll_budget_bounds_iterations(self, jobs, crawl_job, make_producer):
        job_id, config = await crawl_job(limit=100, max_scrolls=3)
        listing = FakeListingPage(batches=[[card(n)] for n in range(1, 10)])

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert listing.collected == 3
        assert await drain(queue) == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_enrichment_updates_stored_item(self, jobs, items, crawl_job, make_producer):
        job_id, config = await crawl_job(limit=10, max_scrolls=2)
        listing = FakeListingPage(batches=[[card(1001)], [card(1001, title="Wall hook")]])

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert await drain(queue) == ["1001"]
        assert (await items.get("1001")).title == "Wall hook"
        assert (await jobs.get(JobKind.CRAWL, job_id)).discovered_count == 1

    @pytest.mark.asyncio
    async def test_challenge_page_raises_hard_block(self, jobs, crawl_job, make_producer):
        job_id, config = await crawl_job(limit=10, max_scrolls=1)
        listing = FakeListingPage(text="Checking your browser - Cloudflare")

        async with control_for(jobs, job_id) as control:
            producer, _ = make_producer(job_id, config, listing, control)
            with pytest.raises(HardBlock):
                await producer.open()

    @pytest.mark.asyncio
    async def test_malformed_cards_are_skipped(self, jobs, crawl_job, make_producer):
        job_id, config = await crawl_job(limit=10, max_scrolls=1)
        listing = FakeListingPage(batches=[[{"id": "1"}, card(2)]])

        async with control_for(jobs, job_id) as control:
            producer, queue = make_producer(job_id, config, listing, control)
            await producer.open()
            await producer.run()

        assert await drain(queue) == ["2"]
