"""Item grading via a vision model."""

from makergrade.labeling.base import (
    BaseLabelingService,
    LabelingError,
    LabelingService,
    MalformedResponse,
    NoCredentials,
    UpstreamError,
)
from makergrade.labeling.openai_labeler import OpenAILabelingService
from makergrade.labeling.schemas import ExtractedFeatures, LabelResult

__all__ = [
    "BaseLabelingService",
    "ExtractedFeatures",
    "LabelResult",
    "LabelingError",
    "LabelingService",
    "MalformedResponse",
    "NoCredentials",
    "OpenAILabelingService",
    "UpstreamError",
]
