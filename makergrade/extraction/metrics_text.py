"""
Text heuristics for item page metrics.

Download counts appear in several shapes (``12,345``, ``1.2k``, ``3 m``)
next to a "下载"/"downloads" label; the author name usually sits on the
line right below the title.
"""

import re

# Download counts outside this open range are treated as noise
METRIC_MAX = 100_000_000

AUTHOR_MAX_LENGTH = 40
FOLLOW_LABELS = ("关注", "Follow")

# ASCII boundary after the suffix so "1.2k下载" still matches
_COMPACT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*([km])(?![a-z0-9_])")
_ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{1,2}-\d{1,2}")
_CLOCK_PATTERN = re.compile(r"\d{1,2}:\d{2}")

DOWNLOAD_LABELS = ("下载", "download")

_SCAN_LINES = 400
_AUTHOR_SCAN_LINES = 200


def parse_number(text: str) -> int | None:
    """Digits and thousands separators only: ``"12,345 下载"`` -> 12345."""
    raw = re.sub(r"[^\d,]", "", text).replace(",", "")
    if not raw:
        return None
    return int(raw)


def parse_compact_number(text: str) -> int | None:
    """Parse ``1.2k``/``3m`` style numbers, falling back to :func:`parse_number`."""
    match = _COMPACT_PATTERN.search(text.strip().lower())
    if not match:
        return parse_number(text)
    multiplier = 1_000_000 if match.group(2) == "m" else 1_000
    return round(float(match.group(1)) * multiplier)


def valid_metric(value: int | None) -> bool:
    return value is not None and 0 < value < METRIC_MAX


def is_date_like(line: str) -> bool:
    """Publication dates and times are not download counts."""
    lowered = line.strip().lower()
    if "发布于" in lowered or "published" in lowered:
        return True
    return bool(_ISO_DATE_PATTERN.search(lowered) or _CLOCK_PATTERN.search(lowered))


def _lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def downloads_from_text(body_text: str) -> int | None:
    """
    Find a download count in visible page text.

    Looks at lines mentioning downloads, then at the line right after each,
    skipping anything that reads like a date.
    """
    lines = _lines(body_text)
    for i, line in enumerate(lines[:_SCAN_LINES]):
        if not any(label in line.lower() for label in DOWNLOAD_LABELS):
            continue
        for candidate in (line, lines[i + 1] if i + 1 < len(lines) else None):
            if candidate is None or is_date_like(candidate):
                continue
            value = parse_compact_number(candidate)
            if valid_metric(value):
                return value
    return None


def downloads_from_labels(texts: list[str]) -> int | None:
    """First valid count among texts near download-labelled elements."""
    for text in texts:
        value = parse_compact_number(text)
        if valid_metric(value):
            return value
    return None


def valid_author(value: str | None) -> str | None:
    """Trimmed author name, or None if empty, too long, or a follow button."""
    if not value:
        return None
    name = value.strip()
    if not name or len(name) > AUTHOR_MAX_LENGTH or name in FOLLOW_LABELS:
        return None
    return name


def author_from_text(title: str | None, body_text: str) -> str | None:
    """The line right below the title, if it looks like a name."""
    if not title:
        return None
    lines = _lines(body_text)[:_AUTHOR_SCAN_LINES]
    try:
        idx = lines.index(title.strip())
    except ValueError:
        return None
    if idx + 1 >= len(lines):
        return None
    return valid_author(lines[idx + 1])
