"""Page extraction: browser sessions, item scraping, and field heuristics."""

from makergrade.extraction.base import (
    HARD_BLOCK_ERROR,
    BrowserSessionProtocol,
    ExtractionError,
    HardBlock,
    ListingPage,
    PageExtractor,
    SessionFactory,
)
from makergrade.extraction.urls import parse_item_url, strip_fragment

__all__ = [
    "HARD_BLOCK_ERROR",
    "BrowserSessionProtocol",
    "ExtractionError",
    "HardBlock",
    "ListingPage",
    "PageExtractor",
    "SessionFactory",
    "parse_item_url",
    "strip_fragment",
]
