"""Pydantic schemas for job configuration, status, and pipeline payloads."""

from makergrade.schemas.items import DiscoveredCandidate, ItemImportRequest, ScrapedItem
from makergrade.schemas.jobs import CrawlJobConfig, JobStatusSnapshot, LabelJobConfig

__all__ = [
    "CrawlJobConfig",
    "DiscoveredCandidate",
    "ItemImportRequest",
    "JobStatusSnapshot",
    "LabelJobConfig",
    "ScrapedItem",
]
