"""Context-aware disambiguation of per-block candidate matches.

A block may match several categories. The winner is the candidate with the
highest context-adjusted score::

    raw + sequence_bonus - conflict_penalty + length_bonus

where the sequence bonus rewards blocks sitting near their category's
canonical ordinal, the conflict penalty counts literal occurrences of the
category name in the full text, and the length bonus rewards blocks inside
the category's length band. The winner is chosen on the unclamped score;
the reported confidence is clamped to [0, 1].
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from promptmark.feedback import FeedbackLog
from promptmark.rules import LENGTH_BANDS, RELEVANT_KEYWORDS
from promptmark.textmatch import count_keywords_present, count_token
from promptmark.types import (
    FeedbackRecord,
    PatternMatch,
    SectionCategory,
    TextBlock,
    category_ordinal,
)

log = logging.getLogger(__name__)

SEQUENCE_BONUS_MAX = 0.1
SEQUENCE_BONUS_STEP = 0.02
CONFLICT_STEP = 0.05
LENGTH_BONUS = 0.05
SURROUNDING_STEP = 0.02
SURROUNDING_CAP = 0.1


@dataclass(frozen=True, slots=True)
class BlockCandidates:
    """All candidate matches found for one block."""

    block: TextBlock
    block_index: int
    candidates: tuple[PatternMatch, ...]


@dataclass(frozen=True, slots=True)
class BlockDecision:
    block: TextBlock
    block_index: int
    candidates: tuple[PatternMatch, ...]
    best_match: PatternMatch | None
    confidence: float                   # Clamped context-adjusted score (0 when no match)
    scores: dict[str, float]            # Unclamped score per candidate category


@dataclass(frozen=True, slots=True)
class ContextDecision:
    best_match: PatternMatch | None
    confidence: float
    scores: dict[str, float]


def sequence_bonus(category: SectionCategory, block_index: int) -> float:
    distance = abs(block_index - category_ordinal(category))
    return max(0.0, SEQUENCE_BONUS_MAX - SEQUENCE_BONUS_STEP * distance)


def conflict_penalty(category: SectionCategory, full_text_lower: str) -> float:
    """Penalty for repeated literal use of the category name in the text.

    A crude collision signal: counts the name as a word-bounded token.
    """
    occurrences = count_token(full_text_lower, category.lower())
    if occurrences <= 1:
        return 0.0
    return CONFLICT_STEP * (occurrences - 1)


def length_bonus(category: SectionCategory, length: int) -> float:
    band = LENGTH_BANDS.get(category)
    if band is not None and band.contains(length):
        return LENGTH_BONUS
    return 0.0


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ContextAnalyzer:
    """Picks the best candidate per block; records user feedback."""

    def __init__(self, feedback: FeedbackLog | None = None) -> None:
        self.feedback = feedback if feedback is not None else FeedbackLog()

    def score_candidate(
        self,
        match: PatternMatch,
        block_index: int,
        block_length: int,
        full_text_lower: str,
    ) -> float:
        return (
            match.confidence
            + sequence_bonus(match.category, block_index)
            - conflict_penalty(match.category, full_text_lower)
            + length_bonus(match.category, block_length)
        )

    def disambiguate(
        self,
        per_block: list[BlockCandidates],
        full_text: str,
    ) -> list[BlockDecision]:
        """Best match and adjusted confidence for every block, in order."""
        full_lower = full_text.lower()
        decisions: list[BlockDecision] = []
        for entry in per_block:
            best: PatternMatch | None = None
            best_score = float("-inf")
            scores: dict[str, float] = {}
            for match in entry.candidates:
                score = self.score_candidate(
                    match, entry.block_index, len(entry.block.content), full_lower,
                )
                scores[match.category] = round(score, 6)
                if score > best_score:
                    best, best_score = match, score
            decisions.append(BlockDecision(
                block=entry.block,
                block_index=entry.block_index,
                candidates=entry.candidates,
                best_match=best,
                confidence=_clamp(best_score) if best is not None else 0.0,
                scores=scores,
            ))
        return decisions

    def analyze_with_context(
        self,
        text: str,
        before: str,
        after: str,
        candidates: list[PatternMatch],
    ) -> ContextDecision:
        """Re-evaluate one section's candidates against fresh surroundings."""
        surroundings = f"{before} {after}".lower()
        combined = f"{before}{text}{after}".lower()
        best: PatternMatch | None = None
        best_score = float("-inf")
        scores: dict[str, float] = {}
        for match in candidates:
            present = count_keywords_present(
                surroundings, RELEVANT_KEYWORDS.get(match.category, ()),
            )
            score = (
                match.confidence
                + min(present * SURROUNDING_STEP, SURROUNDING_CAP)
                - conflict_penalty(match.category, combined)
                + length_bonus(match.category, len(text))
            )
            scores[match.category] = round(score, 6)
            if score > best_score:
                best, best_score = match, score
        return ContextDecision(
            best_match=best,
            confidence=_clamp(best_score) if best is not None else 0.0,
            scores=scores,
        )

    def record_feedback(
        self,
        text: str,
        old_category: SectionCategory,
        new_category: SectionCategory,
        was_correct: bool,
        *,
        original_confidence: int = 0,
    ) -> list[FeedbackRecord]:
        """Record whether ``old_category`` was right for ``text``.

        A correction to a different category also counts as an accepted
        label for the new category.
        """
        records = [self.feedback.append(
            old_category,
            original_confidence=original_confidence,
            was_accepted=was_correct,
        )]
        if not was_correct and new_category != old_category:
            records.append(self.feedback.append(
                new_category,
                original_confidence=original_confidence,
                was_accepted=True,
            ))
        log.debug(
            "feedback for %d chars: %s -> %s (correct=%s)",
            len(text), old_category, new_category, was_correct,
        )
        return records
