"""
Grading prompts for item images.

The rubric asks the model to report presentation features strictly from
what is visible in the images, then map them to a grade S-D. Optional
calibration images (one per grade S/A/B/C) anchor the scale.

Note: This module avoids database imports so prompts can be built in isolation.
"""

import base64
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

GRADE_RUBRIC: dict[str, str] = {
    "S": (
        "Exceptional presentation: multiple views plus exploded or step diagrams, "
        "explicit parameters, a clear use scene, and a visible selling point or "
        "interaction. Reads like a product page."
    ),
    "A": (
        "Strong presentation: several well organized images covering most of use "
        "case, scene, parameters, or instructions, with at most minor gaps."
    ),
    "B": (
        "Adequate presentation: more than one image and some annotation, but "
        "little explanation of how the model is used, printed, or assembled."
    ),
    "C": (
        "Weak presentation: mostly renders or photos of the object itself, little "
        "or no annotation, use case only guessable."
    ),
    "D": "Minimal presentation: a single low-information image or unusable images.",
}

GRADE_CONSTRAINTS: list[str] = [
    "Polished renders alone never justify a grade above C.",
    "Advanced structure or multicolor parts raise a grade only when clearly shown.",
]

FEATURE_GUIDE: list[str] = [
    "structure_clarity (organization of image information only): high = multiple views, "
    "exploded/step diagrams, parameter labels or text callouts clearly organized; "
    "medium = several images or a few labels; low = a single image with little information.",
    "selling_points: the images state a distinct advantage (comparison shots, close-ups "
    "of key features, function demos, callouts such as 'no supports' or 'quick print').",
    "interaction: movable, rotating, sliding, locking, swappable, or combinable parts "
    "explicitly demonstrated (arrows, pose changes, mechanism close-ups).",
    "scene: shown in a concrete usage environment (wall mounted, on a desk, bathroom, kitchen).",
    "params: dimension lines, mm/cm/inch values, counts, part numbers, material or "
    "slicer-setting cards.",
    "instructions: steps, process, assembly order, cautions, or diagrams explaining use.",
    "advanced_structure: complex assemblies, mechanisms, many parts, multi-part "
    "exploded views, snap fits or hinges explicitly shown.",
    "multicolor: multicolor part breakdowns, differently colored components, color "
    "separation diagrams, or part lists.",
    "use_case: the purpose is obvious from appearance and presentation (hook, storage, "
    "decoration, tool).",
    "story: the images tell a backstory, theme, or narrative around the model.",
]

RESPONSE_SHAPE = """{
  "grade": "S|A|B|C|D",
  "reason": "string",
  "extracted": {
    "story": bool, "selling_points": bool, "interaction": bool, "scene": bool,
    "params": bool, "instructions": bool,
    "structure_clarity": "low|medium|high",
    "multicolor": bool, "advanced_structure": bool, "use_case": bool,
    "summary": "string", "confidence": 0.0-1.0
  }
}"""


def get_system_prompt(with_references: bool = False) -> str:
    """Build the grading system prompt."""
    lines = [
        "You grade the presentation quality of 3D-printing model listings.",
        "Extract features ONLY from the images, then assign a grade S/A/B/C/D with a reason.",
        "Strict rule: without explicit visual evidence a feature is false. Do not infer "
        "anything that is not visible, however polished the images look.",
        *FEATURE_GUIDE,
        "Grades:",
        *(f"{grade}: {text}" for grade, text in GRADE_RUBRIC.items()),
        *(f"Constraint: {c}" for c in GRADE_CONSTRAINTS),
    ]
    if with_references:
        lines.append(
            "You also receive reference examples for grades S, A, B and C. Use them to "
            "calibrate information density and structure quality, but grade the "
            "current sample on its own images."
        )
    lines += [
        "Tie-breaking: between S and A choose A; between A and C choose C. Grade S only "
        "when the sample is very close to the S reference.",
        "Respond with exactly one JSON object and no other text, in this shape:",
        RESPONSE_SHAPE,
    ]
    return "\n".join(lines)


@dataclass(frozen=True)
class ReferenceImage:
    """A calibration image for one grade, as a data URL."""

    grade: str
    data_url: str


REFERENCE_GRADES = ("S", "A", "B", "C")
_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


def load_reference_images(directory: str | Path | None) -> list[ReferenceImage]:
    """
    Load one calibration image per grade from a directory.

    Files are matched by a name starting with the lowercase grade letter
    followed by ``level`` (e.g. ``slevel1.png``, ``alevel2.jpg``). Missing
    grades are skipped.
    """
    if not directory:
        return []
    root = Path(directory)
    if not root.is_dir():
        logger.warning("Reference image directory not found", extra={"path": str(root)})
        return []

    files = sorted(p for p in root.iterdir() if p.suffix.lower() in _IMAGE_SUFFIXES)
    references: list[ReferenceImage] = []
    for grade in REFERENCE_GRADES:
        prefix = f"{grade.lower()}level"
        match = next((p for p in files if p.name.lower().startswith(prefix)), None)
        if match is None:
            continue
        mime = mimetypes.guess_type(match.name.lower())[0] or "application/octet-stream"
        encoded = base64.b64encode(match.read_bytes()).decode("ascii")
        references.append(ReferenceImage(grade=grade, data_url=f"data:{mime};base64,{encoded}"))

    logger.info(
        "Loaded grade reference images",
        extra={"path": str(root), "grades": [r.grade for r in references]},
    )
    return references


def build_user_content(
    image_urls: list[str],
    references: list[ReferenceImage],
) -> list[dict[str, Any]]:
    """Chat content parts: the sample images, then the calibration images."""
    parts: list[dict[str, Any]] = [
        {"type": "text", "text": "Grade using only the images that follow."}
    ]
    parts += [{"type": "image_url", "image_url": {"url": url}} for url in image_urls]

    if references:
        parts.append({"type": "text", "text": "Reference examples (calibration only):"})
        for ref in references:
            parts.append({"type": "text", "text": f"Reference {ref.grade}:"})
            parts.append({"type": "image_url", "image_url": {"url": ref.data_url}})
    return parts
