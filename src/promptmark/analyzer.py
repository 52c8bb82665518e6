"""Analysis orchestrator: raw prompt text -> typed, scored sections.

Pipeline:
    1. Blank input short-circuits to an empty result.
    2. Segment into blank-line paragraphs; a single paragraph longer than
       ``sentence_fallback_min_chars`` is split into sentences, and a single
       short paragraph is split only when its sentences classify into two or
       more distinct categories.
    3. Match each block with the PatternMatcher.
    4. Disambiguate all blocks with the ContextAnalyzer.
    5. Score each surviving block with the ConfidenceScorer and round to an
       integer percentage.
    6. Aggregate: mean section confidence + min(5 * distinct categories, 20),
       capped at 100.

``analyze`` never raises: faults in steps 2-6 are reported as a single
``analysis_error`` entry with empty sections.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any

from promptmark.confidence import ConfidenceScorer
from promptmark.config import PipelineConfig
from promptmark.context import BlockCandidates, BlockDecision, ContextAnalyzer
from promptmark.pattern_matcher import PatternMatcher
from promptmark.textmatch import paragraph_spans, sentence_spans
from promptmark.types import (
    AnalysisResult,
    DetectedSection,
    ErrorEntry,
    PatternMatch,
    ReanalysisOrigin,
    SectionCategory,
    SectionMetadata,
    SegmentationOrigin,
    TextBlock,
    is_category,
)

log = logging.getLogger(__name__)

DIVERSITY_STEP = 5
DIVERSITY_CAP = 20


@dataclass(frozen=True, slots=True)
class SectionFeedback:
    """User verdict on a section's category."""

    corrected_category: SectionCategory
    was_correct: bool


@dataclass(frozen=True, slots=True)
class AnalysisStats:
    total_analyses: int
    average_processing_time_ms: float
    average_confidence: float
    pattern_stats: dict[str, int]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (no banker's rounding)."""
    return int(value + 0.5)


def aggregate_confidence(sections: list[DetectedSection] | tuple[DetectedSection, ...]) -> int:
    """Mean section confidence plus a category-diversity bonus, capped at 100."""
    if not sections:
        return 0
    mean = sum(s.confidence for s in sections) / len(sections)
    distinct = len({s.category for s in sections})
    bonus = min(DIVERSITY_STEP * distinct, DIVERSITY_CAP)
    return min(100, round_half_up(mean + bonus))


def section_id(category: str, start: int, end: int) -> str:
    return f"{category}-{start}-{end}"


class TextAnalyzer:
    """Orchestrates segmentation, matching, disambiguation and scoring."""

    def __init__(
        self,
        matcher: PatternMatcher | None = None,
        context: ContextAnalyzer | None = None,
        scorer: ConfidenceScorer | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.matcher = matcher or PatternMatcher(acceptance_floor=self.config.acceptance_floor)
        self.context = context or ContextAnalyzer()
        self.scorer = scorer or ConfidenceScorer(self.context.feedback)
        self._total_analyses = 0
        self._total_time_ms = 0.0

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    def segment(self, text: str) -> list[TextBlock]:
        """Split text into analyzable blocks with global offsets."""
        spans = paragraph_spans(text)
        if len(spans) <= 1:
            whole = spans[0] if spans else (0, len(text))
            sentences = sentence_spans(text, *whole)
            if len(text) > self.config.sentence_fallback_min_chars:
                if sentences:
                    spans = sentences
            elif len(sentences) > 1 and self._sentences_diverge(text, sentences):
                spans = sentences
        return [TextBlock(text[s:e], s, e) for s, e in spans]

    def _sentences_diverge(self, text: str, sentences: list[tuple[int, int]]) -> bool:
        """True when the sentences of a short block lead with different categories."""
        leaders: set[str] = set()
        for s, e in sentences:
            best = self._peek_best(text[s:e])
            if best is not None:
                leaders.add(best)
        return len(leaders) > 1

    def _peek_best(self, text: str) -> str | None:
        best: PatternMatch | None = None
        for category in self.matcher.rules:
            found = self.matcher.best_for_category(text, category)
            if found is not None and (best is None or found.confidence > best.confidence):
                best = found
        return best.category if best else None

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, text: str) -> AnalysisResult:
        """Detect typed sections in ``text``; never raises."""
        started = time.perf_counter()
        if not text or not text.strip():
            return AnalysisResult.empty()
        try:
            blocks = self.segment(text)
            per_block = [
                BlockCandidates(block=b, block_index=i, candidates=tuple(self.matcher.match(b.content)))
                for i, b in enumerate(blocks)
            ]
            decisions = self.context.disambiguate(per_block, text)
            sections = [
                self._section_from_decision(d, d.best_match, text)
                for d in decisions
                if d.best_match is not None
            ]
            confidence = aggregate_confidence(sections)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            log.exception("analysis failed for %d chars", len(text))
            return AnalysisResult(
                sections=(),
                confidence=0,
                processing_time_ms=elapsed,
                errors=(ErrorEntry(type="analysis_error", message=str(exc) or type(exc).__name__),),
            )
        elapsed = (time.perf_counter() - started) * 1000
        self._total_analyses += 1
        self._total_time_ms += elapsed
        log.debug(
            "analyzed %d chars: %d blocks, %d sections, confidence %d (%.2fms)",
            len(text), len(blocks), len(sections), confidence, elapsed,
        )
        return AnalysisResult(
            sections=tuple(sections),
            confidence=confidence,
            processing_time_ms=elapsed,
            errors=(),
        )

    def _section_from_decision(
        self,
        decision: BlockDecision,
        match: PatternMatch,
        text: str,
    ) -> DetectedSection:
        block = decision.block
        draft = DetectedSection(
            id=section_id(match.category, block.start_index, block.end_index),
            category=match.category,
            content=block.content,
            confidence=round_half_up(decision.confidence * 100),
            start_index=block.start_index,
            end_index=block.end_index,
            rule_ids=match.rule_ids,
            metadata=SectionMetadata(SegmentationOrigin(
                block_index=decision.block_index,
                raw_confidence=match.confidence,
                context_confidence=decision.confidence,
                scored_confidence=decision.confidence,
            )),
        )
        scored = self.scorer.score_section(draft, text)
        return replace(
            draft,
            confidence=round_half_up(scored * 100),
            metadata=SectionMetadata(SegmentationOrigin(
                block_index=decision.block_index,
                raw_confidence=match.confidence,
                context_confidence=decision.confidence,
                scored_confidence=scored,
            )),
        )

    # ------------------------------------------------------------------
    # Re-analysis
    # ------------------------------------------------------------------

    def reanalyze_section(
        self,
        section: DetectedSection,
        full_text: str,
        feedback: SectionFeedback | None = None,
    ) -> DetectedSection:
        """Re-evaluate one section with fresh surrounding context.

        An explicit user correction wins; otherwise the best contextual match
        is used, falling back to the section's original category.
        """
        window = self.config.reanalysis_context_chars
        before = full_text[max(0, section.start_index - window):section.start_index]
        after = full_text[section.end_index:section.end_index + window]
        candidates = self.matcher.match(section.content)

        if feedback is not None and not is_category(feedback.corrected_category):
            log.warning(
                "ignoring feedback with unknown category %r for %s",
                feedback.corrected_category, section.id,
            )
            feedback = None
        if feedback is not None:
            self.context.record_feedback(
                section.content,
                section.category,
                feedback.corrected_category,
                feedback.was_correct,
                original_confidence=section.confidence,
            )

        origin = ReanalysisOrigin(
            previous_category=section.category,
            previous_confidence=section.confidence,
            user_corrected=False,
        )
        if feedback is not None and not feedback.was_correct:
            category = feedback.corrected_category
            return replace(
                section,
                id=section_id(category, section.start_index, section.end_index),
                category=category,
                confidence=100,
                metadata=SectionMetadata(replace(origin, user_corrected=True)),
            )

        decision = self.context.analyze_with_context(section.content, before, after, candidates)
        if decision.best_match is None:
            log.warning(
                "reanalysis of %s found no candidates; keeping category %s",
                section.id, section.category,
            )
            return replace(section, metadata=SectionMetadata(origin))

        match = decision.best_match
        draft = replace(
            section,
            id=section_id(match.category, section.start_index, section.end_index),
            category=match.category,
            confidence=round_half_up(decision.confidence * 100),
            rule_ids=match.rule_ids,
            metadata=SectionMetadata(origin),
        )
        scored = self.scorer.score_section(draft, full_text)
        return replace(draft, confidence=round_half_up(scored * 100))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_analysis_stats(self) -> AnalysisStats:
        average_time = self._total_time_ms / self._total_analyses if self._total_analyses else 0.0
        return AnalysisStats(
            total_analyses=self._total_analyses,
            average_processing_time_ms=round(average_time, 3),
            average_confidence=round(self.scorer.get_average_confidence(), 4),
            pattern_stats=self.matcher.get_pattern_stats(),
        )


def analysis_stats_to_dict(stats: AnalysisStats) -> dict[str, Any]:
    return {
        "total_analyses": stats.total_analyses,
        "average_processing_time_ms": stats.average_processing_time_ms,
        "average_confidence": stats.average_confidence,
        "pattern_stats": dict(stats.pattern_stats),
    }
