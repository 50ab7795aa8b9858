"""
Repositories for job and item persistence.

Jobs and items are written from concurrent workers, so each repository
takes a session factory and runs every operation in its own transaction.
"""

from makergrade.repositories.items import ItemRepository
from makergrade.repositories.jobs import JobNotFoundError, JobRepository

__all__ = ["ItemRepository", "JobNotFoundError", "JobRepository"]
