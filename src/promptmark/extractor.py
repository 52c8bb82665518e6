"""Post-processing of analyzed sections into a clean, non-overlapping set.

Steps (each switchable through ``ExtractionOptions``):
    1. analyze the text
    2. drop sections below ``min_confidence_threshold``
    3. expand each section to sentence edges (growth capped)
    4. resolve overlaps: higher confidence wins; same category with a small
       confidence gap merges into one composite section
    5. keep the top ``max_sections_per_type`` per category
    6. order by position
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from promptmark.analyzer import TextAnalyzer, round_half_up, section_id
from promptmark.config import PipelineConfig
from promptmark.pattern_matcher import raw_score
from promptmark.textmatch import (
    SentenceEdges,
    next_boundary,
    previous_boundary,
    token_overlap_ratio,
)
from promptmark.types import (
    CustomPatternOrigin,
    DetectedSection,
    ErrorEntry,
    MergeOrigin,
    PatternMatch,
    SectionCategory,
    SectionMetadata,
    error_to_dict,
    is_category,
    section_to_dict,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExtractionOptions:
    min_confidence_threshold: int = 30
    resolve_overlaps: bool = True
    preserve_context: bool = True
    max_sections_per_type: int = 3


@dataclass(frozen=True, slots=True)
class ExtractionMetadata:
    total_blocks: int
    processed_blocks: int
    overlaps_resolved: int
    average_confidence: float


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    sections: tuple[DetectedSection, ...]
    metadata: ExtractionMetadata
    errors: tuple[ErrorEntry, ...] = field(default=())


def _mean_confidence(sections: Sequence[DetectedSection]) -> float:
    if not sections:
        return 0.0
    return round(sum(s.confidence for s in sections) / len(sections), 2)


# ---------------------------------------------------------------------------
# Pure steps
# ---------------------------------------------------------------------------

def expand_to_sentence_edges(
    section: DetectedSection,
    text: str,
    growth_cap: float = 0.5,
) -> DetectedSection:
    """Grow a section outward to the nearest sentence terminators.

    Each side is judged on its own against a budget of ``growth_cap`` times
    the original length. When both sides together exceed the budget only the
    smaller growth is applied, and a side that alone exceeds it is left as is.
    """
    start = previous_boundary(text, section.start_index)
    end = next_boundary(text, section.end_index)
    left = section.start_index - start
    right = end - section.end_index
    budget = section.length * growth_cap
    if left + right > budget:
        if left <= right:
            end = section.end_index
            start = start if left <= budget else section.start_index
        else:
            start = section.start_index
            end = end if right <= budget else section.end_index
    if start == section.start_index and end == section.end_index:
        return section
    return replace(
        section,
        content=text[start:end],
        start_index=start,
        end_index=end,
        metadata=replace(
            section.metadata,
            expanded_from=section.metadata.expanded_from
            or (section.start_index, section.end_index),
        ),
    )


def _merged_ids(section: DetectedSection) -> tuple[str, ...]:
    origin = section.metadata.origin
    if isinstance(origin, MergeOrigin):
        return origin.merged_ids
    return (section.id,)


def _merged_confidences(section: DetectedSection) -> tuple[int, ...]:
    origin = section.metadata.origin
    if isinstance(origin, MergeOrigin):
        return origin.source_confidences
    return (section.confidence,)


def merge_sections(a: DetectedSection, b: DetectedSection, text: str) -> DetectedSection:
    """Union span of two same-category sections with averaged confidence."""
    start = min(a.start_index, b.start_index)
    end = max(a.end_index, b.end_index)
    rule_ids = tuple(dict.fromkeys(a.rule_ids + b.rule_ids))
    return DetectedSection(
        id=f"{a.id}+{b.id}",
        category=a.category,
        content=text[start:end],
        confidence=round_half_up((a.confidence + b.confidence) / 2),
        start_index=start,
        end_index=end,
        rule_ids=rule_ids,
        metadata=SectionMetadata(MergeOrigin(
            merged_ids=_merged_ids(a) + _merged_ids(b),
            source_confidences=_merged_confidences(a) + _merged_confidences(b),
        )),
    )


def resolve_overlaps(
    sections: Sequence[DetectedSection],
    text: str,
    merge_gap: int = 10,
) -> tuple[list[DetectedSection], int]:
    """Left-to-right overlap resolution; returns (sections, resolutions).

    No two returned sections overlap.
    """
    kept: list[DetectedSection] = []
    resolved = 0
    for section in sorted(sections, key=lambda s: (s.start_index, s.end_index)):
        current: DetectedSection | None = section
        while current is not None:
            clash = next((k for k in kept if k.overlaps(current)), None)
            if clash is None:
                break
            resolved += 1
            kept.remove(clash)
            if (
                clash.category == current.category
                and abs(clash.confidence - current.confidence) < merge_gap
            ):
                current = merge_sections(clash, current, text)
            elif current.confidence > clash.confidence:
                continue
            else:
                # Existing section wins outright.
                kept.append(clash)
                current = None
        if current is not None:
            kept.append(current)
    kept.sort(key=lambda s: s.start_index)
    return kept, resolved


def cap_per_category(sections: Sequence[DetectedSection], limit: int) -> list[DetectedSection]:
    """Keep the ``limit`` highest-confidence sections per category, by position."""
    grouped: dict[str, list[DetectedSection]] = defaultdict(list)
    for s in sections:
        grouped[s.category].append(s)
    kept: list[DetectedSection] = []
    for group in grouped.values():
        group.sort(key=lambda s: (-s.confidence, s.start_index))
        kept.extend(group[: max(0, limit)])
    kept.sort(key=lambda s: s.start_index)
    return kept


def _compile_custom(pattern: str | re.Pattern[str]) -> re.Pattern[str]:
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern, re.IGNORECASE | re.MULTILINE)


class SectionExtractor:
    """Runs analysis and cleans the result into extractable sections."""

    def __init__(
        self,
        analyzer: TextAnalyzer | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.analyzer = analyzer or TextAnalyzer(config=config)
        self.config = config or self.analyzer.config

    def extract(self, text: str, options: ExtractionOptions | None = None) -> ExtractionResult:
        options = options or ExtractionOptions()
        analysis = self.analyzer.analyze(text)
        errors = analysis.errors
        sections = list(analysis.sections)
        try:
            total_blocks = len(self.analyzer.segment(text)) if text.strip() else 0
            sections, resolved = self._clean(sections, text, options)
        except Exception as exc:
            log.exception("extraction failed for %d chars", len(text))
            return ExtractionResult(
                sections=(),
                metadata=ExtractionMetadata(0, 0, 0, 0.0),
                errors=errors + (ErrorEntry(type="extraction_error", message=str(exc)),),
            )
        return ExtractionResult(
            sections=tuple(sections),
            metadata=ExtractionMetadata(
                total_blocks=total_blocks,
                processed_blocks=len(analysis.sections),
                overlaps_resolved=resolved,
                average_confidence=_mean_confidence(sections),
            ),
            errors=errors,
        )

    def _clean(
        self,
        sections: list[DetectedSection],
        text: str,
        options: ExtractionOptions,
    ) -> tuple[list[DetectedSection], int]:
        kept = [s for s in sections if s.confidence >= options.min_confidence_threshold]
        dropped = len(sections) - len(kept)
        if dropped:
            log.debug("dropped %d sections below confidence %d", dropped, options.min_confidence_threshold)
        if options.preserve_context:
            kept = [
                expand_to_sentence_edges(s, text, self.config.expansion_growth_cap)
                for s in kept
            ]
        resolved = 0
        if options.resolve_overlaps:
            kept, resolved = resolve_overlaps(kept, text, self.config.overlap_merge_gap)
        kept = cap_per_category(kept, options.max_sections_per_type)
        return kept, resolved

    def extract_sections_by_type(
        self,
        text: str,
        category: SectionCategory,
        options: ExtractionOptions | None = None,
    ) -> list[DetectedSection]:
        result = self.extract(text, options)
        return [s for s in result.sections if s.category == category]

    def extract_with_custom_patterns(
        self,
        text: str,
        custom_patterns: Mapping[str, Sequence[str | re.Pattern[str]]],
        options: ExtractionOptions | None = None,
    ) -> ExtractionResult:
        """Layer ad-hoc patterns on top of the standard extraction.

        Custom hits cover the sentence containing the match and are skipped
        when their token overlap with an already kept section reaches the
        configured similarity threshold.
        """
        options = options or ExtractionOptions()
        base = self.extract(text, options)
        sections = list(base.sections)
        errors = list(base.errors)
        added = 0
        for category, patterns in custom_patterns.items():
            if not is_category(category):
                log.warning("skipping custom patterns for unknown category %r", category)
                errors.append(ErrorEntry(
                    type="pattern_error",
                    message=f"Unknown category: {category}",
                    severity="warning",
                ))
                continue
            for i, raw_pattern in enumerate(patterns):
                try:
                    pattern = _compile_custom(raw_pattern)
                except re.error as exc:
                    log.warning("skipping invalid custom pattern %r: %s", raw_pattern, exc)
                    errors.append(ErrorEntry(
                        type="pattern_error",
                        message=f"Invalid pattern {raw_pattern!r}: {exc}",
                        severity="warning",
                    ))
                    continue
                for candidate in self._custom_hits(text, category, pattern, i):  # type: ignore[arg-type]
                    if candidate.confidence < options.min_confidence_threshold:
                        continue
                    if any(
                        token_overlap_ratio(candidate.content, s.content) >= self.config.dedup_similarity
                        for s in sections
                    ):
                        continue
                    sections.append(candidate)
                    added += 1

        resolved = base.metadata.overlaps_resolved
        if options.resolve_overlaps:
            sections, extra = resolve_overlaps(sections, text, self.config.overlap_merge_gap)
            resolved += extra
        sections = cap_per_category(sections, options.max_sections_per_type)
        log.debug("custom patterns added %d sections", added)
        return ExtractionResult(
            sections=tuple(sections),
            metadata=replace(
                base.metadata,
                overlaps_resolved=resolved,
                average_confidence=_mean_confidence(sections),
            ),
            errors=tuple(errors),
        )

    def _custom_hits(
        self,
        text: str,
        category: SectionCategory,
        pattern: re.Pattern[str],
        index: int,
    ) -> list[DetectedSection]:
        hits: list[DetectedSection] = []
        seen: set[tuple[int, int]] = set()
        rule_id = f"custom:{category}:{index}"
        edges = SentenceEdges(text)
        for m in pattern.finditer(text):
            if m.end() == m.start():
                continue
            start, end = edges.enclosing(m.start(), m.end())
            end = max(end, m.end())
            if end <= start or (start, end) in seen:
                continue
            seen.add((start, end))
            sentence = text[start:end]
            match = PatternMatch(
                category=category,
                confidence=raw_score(len(m.group(0)), len(sentence), m.group(0).lower(), category),
                matched_text=m.group(0),
                rule_ids=(rule_id,),
                start_index=m.start(),
                end_index=m.end(),
            )
            scored = self.analyzer.scorer.score_pattern_match(match, text)
            hits.append(DetectedSection(
                id=f"custom-{section_id(category, start, end)}",
                category=category,
                content=sentence,
                confidence=round_half_up(scored * 100),
                start_index=start,
                end_index=end,
                rule_ids=(rule_id,),
                metadata=SectionMetadata(CustomPatternOrigin(pattern=pattern.pattern, scored_confidence=scored)),
            ))
        return hits


def extraction_result_to_dict(result: ExtractionResult) -> dict[str, Any]:
    return {
        "sections": [section_to_dict(s) for s in result.sections],
        "metadata": {
            "total_blocks": result.metadata.total_blocks,
            "processed_blocks": result.metadata.processed_blocks,
            "overlaps_resolved": result.metadata.overlaps_resolved,
            "average_confidence": result.metadata.average_confidence,
        },
        "errors": [error_to_dict(e) for e in result.errors],
    }
