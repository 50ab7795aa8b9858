"""
MakerWorld item page extractor.

Fields are read from the rendered DOM first, then from visible text
heuristics, and finally from JSON API payloads observed while the page
loaded.
"""

import json
import logging
import re

from playwright.async_api import BrowserContext, Error as PlaywrightError, Locator, Page, Response

from makergrade.core.config import settings
from makergrade.extraction.base import ExtractionError, HardBlock, contains_challenge
from makergrade.extraction.field_recovery import FieldRecovery
from makergrade.extraction.metrics_text import (
    author_from_text,
    downloads_from_labels,
    downloads_from_text,
    valid_author,
)
from makergrade.extraction.urls import parse_item_url, strip_fragment
from makergrade.schemas.items import ScrapedItem

logger = logging.getLogger(__name__)

PROVIDER = "makerworld"

AUTHOR_SELECTORS = ('a[href*="/@"]', 'a[href*="/user/"]', '[data-testid*="author"]')
DESCRIPTION_SELECTORS = ("main", "article")

API_URL_PATTERN = re.compile(r"api|graphql", re.IGNORECASE)
EXCLUDED_IMAGE_PATTERN = re.compile(r"avatar|icon|logo|badge", re.IGNORECASE)
PREFERRED_IMAGE_PATTERN = re.compile(r"makerworld|design|model", re.IGNORECASE)

MAX_IMAGES = 30
MAX_DESCRIPTION_CHARS = 6000
CHALLENGE_WINDOW = 2000
MAX_LABEL_TEXTS = 80

DOWNLOAD_LABEL_SCRIPT = """
(nodes) => {
  const out = [];
  for (const el of nodes) {
    const key = ((el.getAttribute('aria-label') || '') + ' ' + (el.getAttribute('title') || '')).toLowerCase();
    if (!key.includes('下载') && !key.includes('download')) continue;
    const text = ((el.parentElement && el.parentElement.innerText) || el.innerText || '').trim();
    if (text) out.push(text);
  }
  return out;
}
"""

IMAGE_SOURCES_SCRIPT = "(imgs) => imgs.map((img) => img.src).filter(Boolean)"


def select_image_urls(og_image: str | None, sources: list[str]) -> list[str]:
    """Distinct http(s) images, preferring hosted model images, capped at 30."""
    cleaned = [s.strip() for s in sources if s]
    cleaned = [s for s in cleaned if s.startswith("http") and not EXCLUDED_IMAGE_PATTERN.search(s)]
    distinct = list(dict.fromkeys(u for u in [og_image, *cleaned] if u))
    preferred = [u for u in distinct if PREFERRED_IMAGE_PATTERN.search(u)]
    return (preferred or distinct)[:MAX_IMAGES]


async def _first_text(locator: Locator) -> str | None:
    try:
        if await locator.count() < 1:
            return None
        text = (await locator.first.inner_text()).strip()
    except PlaywrightError:
        return None
    return text or None


async def _meta_content(page: Page, selector: str) -> str | None:
    locator = page.locator(selector)
    try:
        if await locator.count() < 1:
            return None
        value = await locator.first.get_attribute("content")
    except PlaywrightError:
        return None
    return value.strip() if value and value.strip() else None


class MakerWorldExtractor:
    """Scrapes item pages in a shared browser context."""

    def __init__(self, context: BrowserContext):
        self._context = context

    async def extract(self, url: str) -> ScrapedItem:
        """
        Open an item page and read its fields.

        Raises:
            HardBlock: If the page served an anti-automation challenge
            ExtractionError: If navigation fails or the page is not an item
        """
        try:
            page = await self._context.new_page()
        except PlaywrightError as e:
            raise ExtractionError(f"Failed to open page: {e}", cause=e, provider=PROVIDER)

        recovery = FieldRecovery()
        page.on("response", lambda response: self._capture_payload(response, recovery))
        try:
            return await self._extract_from(page, url, recovery)
        except PlaywrightError as e:
            raise ExtractionError(f"Failed to scrape {url}: {e}", cause=e, provider=PROVIDER)
        finally:
            if not page.is_closed():
                await page.close()

    async def _capture_payload(self, response: Response, recovery: FieldRecovery) -> None:
        if recovery.complete or not API_URL_PATTERN.search(response.url):
            return
        if "application/json" not in response.headers.get("content-type", "").lower():
            return
        try:
            payload = await response.json()
        except (PlaywrightError, json.JSONDecodeError, UnicodeDecodeError):
            return
        recovery.visit(payload)

    async def _extract_from(self, page: Page, url: str, recovery: FieldRecovery) -> ScrapedItem:
        await page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=settings.BROWSER_NAVIGATION_TIMEOUT_MS,
        )
        await page.wait_for_timeout(settings.PAGE_SETTLE_MS)

        canonical = strip_fragment(page.url)
        parsed = parse_item_url(canonical)
        if parsed is None:
            raise ExtractionError(f"Not an item page: {canonical}", provider=PROVIDER)
        item_id, item_url = parsed

        try:
            body_text = await page.locator("body").inner_text()
        except PlaywrightError:
            body_text = ""
        if contains_challenge(body_text, CHALLENGE_WINDOW):
            raise HardBlock(url, provider=PROVIDER)

        title = await _first_text(page.locator("h1")) or await _meta_content(
            page, 'meta[property="og:title"]'
        )
        author = await self._author(page)
        downloads = await self._downloads(page)

        og_image = await _meta_content(page, 'meta[property="og:image"]')
        sources = await page.locator("img").evaluate_all(IMAGE_SOURCES_SCRIPT)
        image_urls = select_image_urls(og_image, sources)

        description = None
        for selector in DESCRIPTION_SELECTORS:
            description = await _first_text(page.locator(selector))
            if description:
                description = description[:MAX_DESCRIPTION_CHARS]
                break

        if body_text:
            author = author or author_from_text(title, body_text)
            downloads = downloads or downloads_from_text(body_text)
        author = author or recovery.get("author")
        downloads = downloads or recovery.get("downloads")

        logger.debug(
            "Item page scraped",
            extra={
                "item_id": item_id,
                "has_title": bool(title),
                "has_author": bool(author),
                "downloads": downloads,
                "image_count": len(image_urls),
            },
        )
        return ScrapedItem(
            id=item_id,
            url=item_url,
            title=title,
            author=author,
            downloads=downloads,
            image_urls=image_urls,
            description=description,
        )

    async def _author(self, page: Page) -> str | None:
        for selector in AUTHOR_SELECTORS:
            name = valid_author(await _first_text(page.locator(selector)))
            if name:
                return name
        return None

    async def _downloads(self, page: Page) -> int | None:
        try:
            texts = await page.locator("[aria-label],[title]").evaluate_all(DOWNLOAD_LABEL_SCRIPT)
        except PlaywrightError:
            return None
        return downloads_from_labels(texts[:MAX_LABEL_TEXTS])
