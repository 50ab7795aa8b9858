"""
Pydantic schemas for labeler output.

These enforce the grade vocabulary and the feature set the grader must
report, and normalize the values models tend to get slightly wrong.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

Grade = Literal["S", "A", "B", "C", "D"]
StructureClarity = Literal["low", "medium", "high"]


class ExtractedFeatures(BaseModel):
    """Presentation features observed in an item's images.

    Every flag is True only when the images show explicit evidence.
    """

    story: bool = False
    selling_points: bool = False
    interaction: bool = False
    scene: bool = False
    params: bool = False
    instructions: bool = False
    structure_clarity: StructureClarity = "low"
    multicolor: bool = False
    advanced_structure: bool = False
    use_case: bool = False
    summary: str = ""
    confidence: float = Field(default=0.0, description="Grader confidence, clamped to 0-1")

    @field_validator("structure_clarity", mode="before")
    @classmethod
    def lowercase_clarity(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: object) -> float:
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        if value != value:  # NaN
            return 0.0
        return max(0.0, min(1.0, value))

    def feature_summary(self) -> str:
        """One-line rendering of every feature, used when no reason is given."""
        return (
            f"features: story={self.story}, selling_points={self.selling_points}, "
            f"interaction={self.interaction}, scene={self.scene}, params={self.params}, "
            f"instructions={self.instructions}, structure={self.structure_clarity}, "
            f"multicolor={self.multicolor}, advanced={self.advanced_structure}, "
            f"use_case={self.use_case}"
        )


class LabelResult(BaseModel):
    """A grade, its rationale, and the features behind it."""

    grade: Grade
    reason: str = ""
    extracted: ExtractedFeatures

    @field_validator("grade", mode="before")
    @classmethod
    def normalize_grade(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("reason", mode="before")
    @classmethod
    def reason_to_text(cls, v: object) -> str:
        return v if isinstance(v, str) else ""

    def with_fallback_reason(self) -> "LabelResult":
        """Replace a blank reason with the feature summary."""
        if self.reason.strip():
            return self
        return self.model_copy(update={"reason": self.extracted.feature_summary()})
