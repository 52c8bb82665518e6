"""Core types shared by every stage of the prompt-structuring pipeline.

All span coordinates are global char offsets into the source text, except
``PatternMatch`` offsets, which are relative to the block that was scanned.
All dataclasses use slots=True.

Type hierarchy:
  SectionCategory  - Closed set of section kinds
  CATEGORY_ORDER   - The one canonical ordering of categories
  PatternMatch     - Best rule hit for one category inside one block
  TextBlock        - Paragraph/sentence slice of the source text
  SectionMetadata  - Closed provenance record (origin union + expansion)
  DetectedSection  - Canonical output unit of analysis
  FeedbackRecord   - One user accept/reject signal for a category
  ErrorEntry       - Structured, non-raising error report
  AnalysisResult   - Output contract of ``TextAnalyzer.analyze``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal


type SectionCategory = Literal[
    "role", "task", "constraints", "examples", "outputFormat", "unknown",
]
type Severity = Literal["error", "warning", "info"]

# Canonical ordering: drives the sequence bonus (ordinal = index) and the
# generation sort. Keep this the only list of categories in the package.
CATEGORY_ORDER: tuple[SectionCategory, ...] = (
    "role",
    "task",
    "constraints",
    "examples",
    "outputFormat",
    "unknown",
)

# Categories the matcher can emit ("unknown" is never matched by a rule).
DETECTABLE_CATEGORIES: tuple[SectionCategory, ...] = CATEGORY_ORDER[:-1]


def category_ordinal(category: str) -> int:
    """Position of ``category`` in CATEGORY_ORDER (unrecognised sorts last)."""
    try:
        return CATEGORY_ORDER.index(category)  # type: ignore[arg-type]
    except ValueError:
        return len(CATEGORY_ORDER)


def is_category(value: str) -> bool:
    return value in CATEGORY_ORDER


# ---------------------------------------------------------------------------
# Matching / segmentation
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PatternMatch:
    """Best-scoring rule hit for one category within one block."""

    category: SectionCategory
    confidence: float           # Raw 0-1 score
    matched_text: str
    rule_ids: tuple[str, ...]
    start_index: int            # Block-relative
    end_index: int              # Block-relative (exclusive)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(
                f"PatternMatch.confidence must be in [0, 1], got {self.confidence}"
            )
        if self.start_index < 0 or self.end_index < self.start_index:
            raise ValueError(
                f"invalid PatternMatch span [{self.start_index}, {self.end_index})"
            )


@dataclass(frozen=True, slots=True)
class TextBlock:
    """Contiguous slice of the source text used as the unit of matching."""

    content: str
    start_index: int
    end_index: int

    def __post_init__(self) -> None:
        if self.start_index < 0:
            raise ValueError(f"start_index must be >= 0, got {self.start_index}")
        if self.end_index - self.start_index != len(self.content):
            raise ValueError(
                "TextBlock span length must equal len(content): "
                f"[{self.start_index}, {self.end_index}) vs {len(self.content)}"
            )


# ---------------------------------------------------------------------------
# Section provenance - closed union discriminated by ``kind``
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SegmentationOrigin:
    """Section produced directly from one analyzed block."""

    block_index: int
    raw_confidence: float       # Pattern matcher score (0-1)
    context_confidence: float   # After sequence/conflict/length adjustment
    scored_confidence: float    # After ConfidenceScorer, before rounding
    kind: Literal["segmentation"] = "segmentation"


@dataclass(frozen=True, slots=True)
class MergeOrigin:
    """Section created by merging overlapping same-category sections."""

    merged_ids: tuple[str, ...]
    source_confidences: tuple[int, ...]
    kind: Literal["merge"] = "merge"


@dataclass(frozen=True, slots=True)
class TemplateOrigin:
    """Full-confidence section synthesized from a template entry."""

    template_id: str
    entry_index: int
    attributes: dict[str, str] = field(default_factory=dict)
    kind: Literal["template"] = "template"


@dataclass(frozen=True, slots=True)
class ReanalysisOrigin:
    """Section re-evaluated with fresh surrounding context."""

    previous_category: SectionCategory
    previous_confidence: int
    user_corrected: bool
    kind: Literal["reanalysis"] = "reanalysis"


@dataclass(frozen=True, slots=True)
class CustomPatternOrigin:
    """Section found by an ad-hoc caller-supplied pattern."""

    pattern: str
    scored_confidence: float
    kind: Literal["custom_pattern"] = "custom_pattern"


type SectionOrigin = (
    SegmentationOrigin
    | MergeOrigin
    | TemplateOrigin
    | ReanalysisOrigin
    | CustomPatternOrigin
)


@dataclass(frozen=True, slots=True)
class SectionMetadata:
    origin: SectionOrigin
    expanded_from: tuple[int, int] | None = None   # Span before boundary expansion


@dataclass(frozen=True, slots=True)
class DetectedSection:
    """A span of source text classified into one category.

    Invariants (enforced in __post_init__):
        - 0 <= start_index < end_index
        - 0 <= confidence <= 100
    The upper bound ``end_index <= len(source)`` is the producer's job.
    """

    id: str
    category: SectionCategory
    content: str
    confidence: int
    start_index: int
    end_index: int
    rule_ids: tuple[str, ...]
    metadata: SectionMetadata

    def __post_init__(self) -> None:
        if self.start_index < 0:
            raise ValueError(f"start_index must be >= 0, got {self.start_index}")
        if self.end_index <= self.start_index:
            raise ValueError(
                f"end_index ({self.end_index}) must be > start_index "
                f"({self.start_index})"
            )
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be in [0, 100], got {self.confidence}")

    @property
    def length(self) -> int:
        return self.end_index - self.start_index

    def overlaps(self, other: DetectedSection) -> bool:
        return self.start_index < other.end_index and other.start_index < self.end_index


# ---------------------------------------------------------------------------
# Feedback, errors, results
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FeedbackRecord:
    category: SectionCategory
    original_confidence: int
    was_accepted: bool
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class ErrorEntry:
    """Structured error report; pipeline entry points return these instead of raising."""

    type: str
    message: str
    severity: Severity = "error"
    line: int | None = None
    column: int | None = None


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    sections: tuple[DetectedSection, ...]
    confidence: int
    processing_time_ms: float
    errors: tuple[ErrorEntry, ...]

    @classmethod
    def empty(cls, processing_time_ms: float = 0.0) -> AnalysisResult:
        return cls(sections=(), confidence=0, processing_time_ms=processing_time_ms, errors=())


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def metadata_to_dict(metadata: SectionMetadata) -> dict[str, Any]:
    origin = metadata.origin
    payload: dict[str, Any] = {"kind": origin.kind}
    match origin:
        case SegmentationOrigin():
            payload.update(
                block_index=origin.block_index,
                raw_confidence=round(origin.raw_confidence, 4),
                context_confidence=round(origin.context_confidence, 4),
                scored_confidence=round(origin.scored_confidence, 4),
            )
        case MergeOrigin():
            payload.update(
                merged_ids=list(origin.merged_ids),
                source_confidences=list(origin.source_confidences),
            )
        case TemplateOrigin():
            payload.update(
                template_id=origin.template_id,
                entry_index=origin.entry_index,
                attributes=dict(origin.attributes),
            )
        case ReanalysisOrigin():
            payload.update(
                previous_category=origin.previous_category,
                previous_confidence=origin.previous_confidence,
                user_corrected=origin.user_corrected,
            )
        case CustomPatternOrigin():
            payload.update(
                pattern=origin.pattern,
                scored_confidence=round(origin.scored_confidence, 4),
            )
    return {
        "origin": payload,
        "expanded_from": list(metadata.expanded_from) if metadata.expanded_from else None,
    }


def section_to_dict(section: DetectedSection) -> dict[str, Any]:
    return {
        "id": section.id,
        "category": section.category,
        "content": section.content,
        "confidence": section.confidence,
        "start_index": section.start_index,
        "end_index": section.end_index,
        "rule_ids": list(section.rule_ids),
        "metadata": metadata_to_dict(section.metadata),
    }


def error_to_dict(error: ErrorEntry) -> dict[str, Any]:
    out: dict[str, Any] = {
        "type": error.type,
        "message": error.message,
        "severity": error.severity,
    }
    if error.line is not None:
        out["line"] = error.line
    if error.column is not None:
        out["column"] = error.column
    return out


def analysis_result_to_dict(result: AnalysisResult) -> dict[str, Any]:
    return {
        "sections": [section_to_dict(s) for s in result.sections],
        "confidence": result.confidence,
        "processing_time_ms": round(result.processing_time_ms, 3),
        "errors": [error_to_dict(e) for e in result.errors],
    }
