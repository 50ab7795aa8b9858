"""
Pydantic schemas for items flowing through the crawl and label pipelines.
"""

from pydantic import BaseModel, Field, field_validator


class DiscoveredCandidate(BaseModel):
    """A deduplicated reference to an item awaiting scrape.

    Lives only for the duration of one crawl run; persisted by folding it
    into the item row via upsert.
    """

    id: str = Field(..., description="Numeric model id")
    url: str = Field(..., description="Canonical item URL")
    cover: str | None = Field(None, description="Cover image URL seen on the listing")
    title: str | None = Field(None, description="Title seen on the listing")
    author: str | None = Field(None, description="Author seen on the listing")

    @property
    def has_enrichment(self) -> bool:
        """True if the sighting carries any field worth merging."""
        return bool(self.cover or self.title or self.author)


class ScrapedItem(BaseModel):
    """Normalized fields returned by a page extractor."""

    id: str
    url: str
    title: str | None = None
    author: str | None = None
    downloads: int | None = Field(None, ge=0, description="Download count metric")
    image_urls: list[str] = Field(default_factory=list)
    description: str | None = None

    @property
    def cover_image(self) -> str | None:
        return self.image_urls[0] if self.image_urls else None


class ItemImportRequest(BaseModel):
    """Item pages to scrape directly, bypassing discovery."""

    urls: list[str] = Field(..., min_length=1, max_length=50)
    cookie_header: str | None = None
    clear_history: bool = True

    @field_validator("urls")
    @classmethod
    def non_blank_urls(cls, v: list[str]) -> list[str]:
        urls = [u.strip() for u in v]
        if any(not u for u in urls):
            raise ValueError("urls must not be blank")
        return urls
