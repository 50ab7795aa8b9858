"""
Job models for crawl and label orchestration.

Crawl and label jobs share one lifecycle and one set of progress columns;
they differ only in their kind-specific counter (``discovered_count`` for
crawl, ``total_count`` for label) and in the shape of their configuration.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from makergrade.core.database import Base

# JSONB on Postgres, plain JSON text elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class JobStatus(str, enum.Enum):
    """Enumeration of job states."""

    QUEUED = "queued"  # Created or recovered, loop not yet started
    RUNNING = "running"  # Loop is processing work
    PAUSED = "paused"  # Loop blocks before its next unit of work
    COMPLETED = "completed"  # Work exhausted without a fatal error
    FAILED = "failed"  # Fatal error, uncaught exception, or cleared


class JobKind(str, enum.Enum):
    """The two job pipelines."""

    CRAWL = "crawl"
    LABEL = "label"


# Statuses the control loop treats as "still ours"
LIVE_STATUSES = (JobStatus.RUNNING, JobStatus.PAUSED)

# Statuses the recovery scheduler re-arms
RECOVERABLE_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


def new_job_id(kind: JobKind) -> str:
    """Generate a job id of the form ``<kind>_<uuid4>``."""
    return f"{kind.value}_{uuid.uuid4()}"


class JobRecordMixin:
    """
    Columns shared by every job table.

    Attributes:
        id: ``<kind>_<uuid>`` primary key
        status: Current lifecycle status
        config: Kind-specific configuration, stored as submitted
        processed_count: Items finished successfully in the current run
        failed_count: Items that failed (non-fatally) in the current run
        last_error: Most recent error text (latest wins)
        started_at: When the execution loop last began
        finished_at: Set exactly when status is completed or failed
    """

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Job id of the form <kind>_<uuid>",
    )

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(
            JobStatus,
            name="job_status",
            native_enum=False,
            length=16,
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
        comment="Current job status",
    )

    config: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Kind-specific job configuration",
    )

    processed_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Items processed successfully",
    )

    failed_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Items that failed",
    )

    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Most recent error message",
    )

    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the execution loop began",
    )

    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the job reached a terminal status",
    )


class CrawlJob(JobRecordMixin, Base):
    """A discovery + scrape run against one listing URL."""

    __tablename__ = "crawl_jobs"

    kind = JobKind.CRAWL

    discovered_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Distinct candidates discovered this run",
    )

    def __repr__(self) -> str:
        return f"<CrawlJob {self.id} ({self.status.value})>"

    @property
    def discovered_or_total_count(self) -> int:
        return self.discovered_count


class LabelJob(JobRecordMixin, Base):
    """A grading run over items that have no label yet."""

    __tablename__ = "label_jobs"

    kind = JobKind.LABEL

    total_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Candidates selected at job start",
    )

    def __repr__(self) -> str:
        return f"<LabelJob {self.id} ({self.status.value})>"

    @property
    def discovered_or_total_count(self) -> int:
        return self.total_count


JobRecord = CrawlJob | LabelJob

JOB_MODELS: dict[JobKind, type[CrawlJob] | type[LabelJob]] = {
    JobKind.CRAWL: CrawlJob,
    JobKind.LABEL: LabelJob,
}
