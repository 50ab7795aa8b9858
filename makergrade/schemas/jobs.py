"""
Pydantic schemas for job configuration and status.

Configurations are validated here before any job row is written; the
validated model is stored verbatim in the job's ``config`` column.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from makergrade.core.config import settings
from makergrade.models.job import JobKind, JobStatus


# =============================================================================
# Job Configuration
# =============================================================================


class CrawlJobConfig(BaseModel):
    """Configuration for a crawl job."""

    start_url: str = Field(
        default_factory=lambda: settings.CRAWL_DEFAULT_START_URL,
        min_length=1,
        max_length=2048,
        description="Listing URL to discover items from",
    )
    limit: int = Field(
        default_factory=lambda: settings.CRAWL_DEFAULT_LIMIT,
        ge=1,
        le=50000,
        description="Maximum number of distinct items to discover",
    )
    max_scrolls: int = Field(
        default_factory=lambda: settings.CRAWL_DEFAULT_MAX_SCROLLS,
        ge=1,
        le=5000,
        description="Scroll iterations before discovery stops",
    )
    concurrency: int = Field(
        default_factory=lambda: settings.CRAWL_DEFAULT_CONCURRENCY,
        ge=1,
        le=5,
        description="Number of concurrent scrape workers",
    )
    delay_ms: int = Field(
        default_factory=lambda: settings.CRAWL_DEFAULT_DELAY_MS,
        ge=0,
        le=5000,
        description="Pause after each item, per worker",
    )
    cookie_header: str | None = Field(
        None,
        description="Cookie header sent with every browser request",
    )

    @field_validator("start_url")
    @classmethod
    def validate_start_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("start_url must be an http(s) URL")
        return v

    @field_validator("cookie_header")
    @classmethod
    def blank_cookie_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class LabelJobConfig(BaseModel):
    """Configuration for a label job."""

    limit: int | None = Field(
        None,
        ge=1,
        le=50000,
        description="Maximum number of unlabeled items to grade (None = all)",
    )


# =============================================================================
# Status
# =============================================================================


class JobStatusSnapshot(BaseModel):
    """Full job record as seen by a polling client."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: JobKind
    status: JobStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    discovered_or_total_count: int = 0
    processed_count: int = 0
    failed_count: int = 0
    last_error: str | None = None
