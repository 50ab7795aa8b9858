"""
Database models.

Models:
    - CrawlJob: Discovery + scrape run and its progress
    - LabelJob: Grading run and its progress
    - JobStatus: Enum of job states
    - JobKind: Enum of job pipelines
    - Item: Design discovered or scraped from the listing site
    - ItemImage: Ordered image belonging to an Item
    - ItemLabel: Grade and features assigned to an Item
"""

from makergrade.models.item import Item, ItemImage, ItemLabel
from makergrade.models.job import (
    JOB_MODELS,
    LIVE_STATUSES,
    RECOVERABLE_STATUSES,
    TERMINAL_STATUSES,
    CrawlJob,
    JobKind,
    JobRecord,
    JobStatus,
    LabelJob,
    new_job_id,
)

__all__ = [
    "CrawlJob",
    "Item",
    "ItemImage",
    "ItemLabel",
    "JOB_MODELS",
    "JobKind",
    "JobRecord",
    "JobStatus",
    "LIVE_STATUSES",
    "LabelJob",
    "RECOVERABLE_STATUSES",
    "TERMINAL_STATUSES",
    "new_job_id",
]
