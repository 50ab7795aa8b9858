"""
Interfaces for page extraction and listing discovery.

The job pipelines depend only on these protocols, so they can run against
the Playwright implementation in production and against deterministic
fixture objects in tests.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from makergrade.schemas.items import ScrapedItem

# Text shown by the anti-automation interstitial
CHALLENGE_MARKERS = ("Cloudflare", "验证您是真人")

# Stored as last_error when a job aborts on a challenge page
HARD_BLOCK_ERROR = "hard block"


def contains_challenge(text: str | None, window: int) -> bool:
    """Check the first ``window`` characters of visible text for a challenge page."""
    if not text:
        return False
    sample = text[:window]
    return any(marker in sample for marker in CHALLENGE_MARKERS)


class ExtractionError(Exception):
    """Base exception for page extraction errors.

    Attributes:
        message: Human-readable error message
        cause: Optional underlying exception
        provider: Name of the extractor that raised the error
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        provider: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class HardBlock(ExtractionError):
    """An anti-automation challenge was served; fatal for the whole job."""

    def __init__(self, url: str, provider: str | None = None):
        super().__init__(f"{HARD_BLOCK_ERROR}: challenge page at {url}", provider=provider)
        self.url = url


class PageExtractor(Protocol):
    """Turns an item URL into normalized item fields."""

    async def extract(self, url: str) -> ScrapedItem:
        """Scrape one item page.

        Raises:
            HardBlock: If a challenge page was served
            ExtractionError: For any other failure
        """
        ...


class ListingResponse(Protocol):
    """A network response observed while the listing page loads."""

    url: str
    content_type: str

    async def text(self) -> str: ...


ResponseHandler = Callable[[ListingResponse], Awaitable[None]]


class ListingPage(Protocol):
    """A scrollable listing surface driven by the discovery producer."""

    def on_response(self, handler: ResponseHandler) -> None:
        """Subscribe to network responses; must be called before :meth:`open`."""
        ...

    async def open(self, url: str) -> None:
        """Navigate to the listing and let it settle."""
        ...

    async def visible_text(self) -> str:
        """Visible text of the page body."""
        ...

    async def collect_cards(self) -> list[dict]:
        """Rendered item cards: dicts with ``id``, ``url``, ``cover``, ``title``."""
        ...

    async def scroll(self) -> None:
        """Scroll one step and wait for new content."""
        ...

    async def close(self) -> None: ...


class BrowserSessionProtocol(Protocol):
    """One browser context per job, shared by discovery and workers."""

    extractor: PageExtractor

    async def open_listing(self) -> ListingPage: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[str | None], Awaitable[BrowserSessionProtocol]]
