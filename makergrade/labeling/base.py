"""
Base interface for labeling services.

A labeling service grades an item from its images. Implementations raise
one of the :class:`LabelingError` subclasses so callers can tell missing
credentials, upstream failures, and unusable responses apart.
"""

from abc import ABC, abstractmethod
from typing import Protocol

from makergrade.labeling.schemas import LabelResult


class LabelingService(Protocol):
    """Protocol for anything that can grade an item."""

    async def label(self, url: str, image_urls: list[str]) -> LabelResult:
        """Grade an item.

        Args:
            url: Item URL, for context only
            image_urls: Ordered image URLs; at most 10 distinct are used

        Returns:
            LabelResult with grade, reason, and extracted features
        """
        ...


class BaseLabelingService(ABC):
    """Abstract base class for labeling providers.

    Attributes:
        provider_name: Human-readable name of the provider (e.g., "openai", "ark")
    """

    provider_name: str = "base"

    @abstractmethod
    async def label(self, url: str, image_urls: list[str]) -> LabelResult:
        """Grade an item from its images.

        Raises:
            NoCredentials: If no provider is configured
            UpstreamError: If the provider call fails
            MalformedResponse: If the response cannot be parsed or validated
        """


class LabelingError(Exception):
    """Base exception for labeling errors.

    Attributes:
        message: Human-readable error message
        cause: Optional underlying exception
        provider: Name of the provider that raised the error
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


class NoCredentials(LabelingError):
    """Raised when no labeling provider has an API key."""

    def __init__(self) -> None:
        super().__init__("no labeling API key configured (set ARK_API_KEY or OPENAI_API_KEY)")


class UpstreamError(LabelingError):
    """Raised when the provider call fails (HTTP, connection, rate limit)."""


class MalformedResponse(LabelingError):
    """Raised when the provider's output is empty, not JSON, or fails validation."""
