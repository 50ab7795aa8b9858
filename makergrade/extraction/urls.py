"""URL helpers for MakerWorld item pages."""

import re
from urllib.parse import urljoin, urlsplit, urlunsplit

SITE_ORIGIN = "https://makerworld.com"

# Absolute item URL as it appears in API payloads and rendered anchors
ITEM_URL_PATTERN = re.compile(r"https?://makerworld\.com/(zh|en)/models/(\d+)")

_ITEM_PATH_PATTERN = re.compile(r"/(zh|en)/models/(\d+)")


def parse_item_url(href: str) -> tuple[str, str] | None:
    """
    Resolve an href to ``(item_id, canonical_url)``.

    Relative hrefs are resolved against the site origin. Returns None when
    the path does not point at an item page.
    """
    path = urlsplit(urljoin(SITE_ORIGIN, href)).path
    match = _ITEM_PATH_PATTERN.search(path)
    if not match:
        return None
    lang, item_id = match.groups()
    return item_id, f"{SITE_ORIGIN}/{lang}/models/{item_id}"


def strip_fragment(url: str) -> str:
    """Drop the ``#fragment`` part of a URL."""
    parts = urlsplit(url)
    return urlunsplit(parts._replace(fragment=""))
