"""
Playwright browser session shared by one job.

A session owns one Chromium process and one context (user agent, viewport,
optional cookie header). Discovery drives a listing page in it while the
workers open short-lived item pages through :class:`MakerWorldExtractor`.
"""

import logging

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Response,
    async_playwright,
)

from makergrade.core.config import settings
from makergrade.extraction.base import ExtractionError, ResponseHandler
from makergrade.extraction.makerworld import MakerWorldExtractor

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled"]
VIEWPORT = {"width": 1280, "height": 720}

# Runs in the page: one entry per distinct item id among rendered anchors,
# with the best cover image found in the closest image-bearing ancestor.
COLLECT_CARDS_SCRIPT = r"""
() => {
  const byId = new Map();
  const urlIn = (s) => {
    const m = (s || '').match(/url\((['"]?)(.*?)\1\)/);
    return m && m[2] ? m[2] : null;
  };
  const push = (arr, u) => {
    const url = String(u || '').trim();
    if (!url || url.startsWith('data:') || url.includes('avatar')) return;
    arr.push(url);
  };
  const firstOfSrcset = (s) => ((s || '').split(',')[0] || '').trim().split(' ')[0] || '';

  const findContainer = (anchor) => {
    let el = anchor;
    for (let i = 0; i < 8 && el; i++) {
      const hasImg = el.querySelector && (el.querySelector('img') || el.querySelector('source'));
      const bgInline = (el.style && el.style.backgroundImage) || '';
      const bgComputed = getComputedStyle(el).backgroundImage || '';
      if (hasImg || bgInline.includes('url(') || (bgComputed && bgComputed !== 'none')) return el;
      el = el.parentElement;
    }
    return anchor.closest('article') || anchor.closest('li') || anchor.closest('div');
  };

  const pickCover = (anchor) => {
    const container = findContainer(anchor);
    if (!container) return null;
    const candidates = [];
    for (const img of container.querySelectorAll('img')) {
      push(candidates, img.currentSrc);
      push(candidates, img.src);
      push(candidates, firstOfSrcset(img.getAttribute('srcset') || (img.dataset && img.dataset.srcset)));
      push(candidates, img.dataset && (img.dataset.src || img.dataset.original));
    }
    for (const source of container.querySelectorAll('source')) {
      push(candidates, firstOfSrcset(source.srcset || source.getAttribute('srcset')));
    }
    for (const el of container.querySelectorAll('[style*="background"]')) {
      push(candidates, urlIn(el.getAttribute('style')));
    }
    const nodes = [container].concat(Array.from(container.querySelectorAll('*')).slice(0, 60));
    for (const node of nodes) {
      const bg = getComputedStyle(node).backgroundImage || '';
      if (bg && bg !== 'none') push(candidates, urlIn(bg));
    }
    return candidates.find((c) => /makerworld|design|model|image/i.test(c)) || candidates[0] || null;
  };

  for (const a of document.querySelectorAll('a[href]')) {
    const m = (a.href || '').match(/https?:\/\/makerworld\.com\/(zh|en)\/models\/(\d+)/);
    if (!m) continue;
    const id = m[2];
    const article = a.closest('article');
    const heading = article && (article.querySelector('h3') || article.querySelector('h2'));
    const title = ((heading && heading.textContent) || a.textContent || '').trim();
    const cover = pickCover(a);
    const prev = byId.get(id);
    if (!prev) {
      byId.set(id, { id, url: 'https://makerworld.com/' + m[1] + '/models/' + id, cover, title: title || null });
    } else {
      if (!prev.cover && cover) prev.cover = cover;
      if ((!prev.title || prev.title.length < 4) && title) prev.title = title;
    }
  }
  return Array.from(byId.values());
}
"""


class PlaywrightResponse:
    """Adapts a Playwright response to the listing response interface."""

    def __init__(self, response: Response):
        self._response = response
        self.url = response.url
        self.content_type = response.headers.get("content-type", "")

    async def text(self) -> str:
        return await self._response.text()


class PlaywrightListingPage:
    """A listing page in the session's context."""

    def __init__(self, page: Page):
        self._page = page

    def on_response(self, handler: ResponseHandler) -> None:
        async def forward(response: Response) -> None:
            try:
                await handler(PlaywrightResponse(response))
            except Exception:
                logger.exception("Listing response handler failed", extra={"url": response.url})

        self._page.on("response", forward)

    async def open(self, url: str) -> None:
        try:
            await self._page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=settings.BROWSER_NAVIGATION_TIMEOUT_MS,
            )
        except PlaywrightError as e:
            raise ExtractionError(f"Failed to open listing {url}: {e}", cause=e, provider="listing")
        await self._page.wait_for_timeout(settings.DISCOVERY_INITIAL_SETTLE_MS)

    async def visible_text(self) -> str:
        try:
            return await self._page.locator("body").inner_text()
        except PlaywrightError:
            return ""

    async def collect_cards(self) -> list[dict]:
        return await self._page.evaluate(COLLECT_CARDS_SCRIPT)

    async def scroll(self) -> None:
        await self._page.mouse.wheel(0, settings.DISCOVERY_SCROLL_PIXELS)
        await self._page.wait_for_timeout(settings.DISCOVERY_SCROLL_SETTLE_MS)

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()


class BrowserSession:
    """One Chromium process and context for the duration of a job.

    Example:
        session = await open_browser_session(cookie_header)
        try:
            item = await session.extractor.extract(url)
        finally:
            await session.close()
    """

    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext):
        self._playwright = playwright
        self._browser = browser
        self.context = context
        self.extractor = MakerWorldExtractor(context)

    async def open_listing(self) -> PlaywrightListingPage:
        return PlaywrightListingPage(await self.context.new_page())

    async def close(self) -> None:
        try:
            await self.context.close()
            await self._browser.close()
        finally:
            await self._playwright.stop()
        logger.debug("Browser session closed")


async def open_browser_session(cookie_header: str | None = None) -> BrowserSession:
    """Launch Chromium and create a context with the configured identity."""
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(
            headless=True,
            executable_path=settings.BROWSER_EXECUTABLE_PATH or None,
            args=LAUNCH_ARGS,
        )
        context = await browser.new_context(
            user_agent=settings.BROWSER_USER_AGENT,
            viewport=VIEWPORT,
            extra_http_headers={"cookie": cookie_header} if cookie_header else None,
        )
        context.set_default_navigation_timeout(settings.BROWSER_NAVIGATION_TIMEOUT_MS)
    except PlaywrightError as e:
        await playwright.stop()
        raise ExtractionError(f"Failed to launch browser: {e}", cause=e, provider="browser")

    logger.info(
        "Browser session opened",
        extra={"with_cookie": bool(cookie_header), "executable": settings.BROWSER_EXECUTABLE_PATH},
    )
    return BrowserSession(playwright, browser, context)
