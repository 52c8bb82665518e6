"""Confidence calibration for detected sections and raw pattern matches.

Section scoring multiplies the incoming confidence by five bounded factors:
- position      - distance from the category's expected place in the text
- length        - fit to the category's {min, max, optimal} length band
- context       - category keywords present in the surrounding text
- type          - a category-specific content test (+/-5%)
- feedback      - historical acceptance rate for the category

Pattern scoring adds small bonuses/penalties to the raw matcher score.
Every evaluated confidence is appended to a history for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass

from promptmark.feedback import FeedbackLog
from promptmark.rules import (
    EXPECTED_POSITIONS,
    LENGTH_BANDS,
    RELEVANT_KEYWORDS,
    TYPE_HEURISTICS,
)
from promptmark.textmatch import count_keywords_present
from promptmark.types import DetectedSection, PatternMatch, SectionCategory

SECTION_FLOOR = 0.1
CONTEXT_STEP = 0.02
SECTION_CONTEXT_CAP = 0.1
PATTERN_CONTEXT_CAP = 0.05


@dataclass(frozen=True, slots=True)
class ConfidenceBreakdown:
    base: float
    position: float
    length: float
    context: float
    type_specific: float
    feedback: float
    final: float

    def as_dict(self) -> dict[str, float]:
        return {
            "base": self.base,
            "position": self.position,
            "length": self.length,
            "context": self.context,
            "type_specific": self.type_specific,
            "feedback": self.feedback,
            "final": self.final,
        }


@dataclass(frozen=True, slots=True)
class ConfidenceStats:
    average_confidence: float
    distribution: dict[str, int]    # low < 0.5 <= medium < 0.8 <= high
    feedback_accuracy: float
    evaluations: int


def _bounded(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


# ---------------------------------------------------------------------------
# Section-level factors
# ---------------------------------------------------------------------------

def position_multiplier(category: SectionCategory, start_index: int, context_length: int) -> float:
    """1.1 at the expected position, down to 0.9 at the far end of the text."""
    position = start_index / context_length if context_length > 0 else 0.0
    deviation = abs(position - EXPECTED_POSITIONS.get(category, 0.5))
    return 1.0 + (0.1 - deviation * 0.2)


def length_multiplier(category: SectionCategory, length: int) -> float:
    band = LENGTH_BANDS[category]
    if length < band.min:
        return 0.8
    if length > band.max:
        return 0.9
    deviation = abs(length - band.optimal) / band.optimal
    return 1.0 + (0.1 - deviation * 0.1)


def context_multiplier(category: SectionCategory, context: str) -> float:
    present = count_keywords_present(context.lower(), RELEVANT_KEYWORDS.get(category, ()))
    return 1.0 + min(present * CONTEXT_STEP, SECTION_CONTEXT_CAP)


def type_multiplier(category: SectionCategory, content: str) -> float:
    heuristic = TYPE_HEURISTICS.get(category)
    if heuristic is None:
        return 1.0
    return 1.05 if heuristic.search(content) else 0.95


def feedback_multiplier(acceptance_rate: float | None) -> float:
    """Map acceptance rate linearly onto [0.8, 1.2]; neutral without history."""
    if acceptance_rate is None:
        return 1.0
    return 0.8 + _bounded(acceptance_rate) * 0.4


# ---------------------------------------------------------------------------
# Pattern-level adjustments
# ---------------------------------------------------------------------------

def specificity_bonus(match: PatternMatch) -> float:
    return min(len("".join(match.rule_ids)) / 100, 0.1)


def pattern_context_bonus(match: PatternMatch, text: str) -> float:
    surrounding = (text[: match.start_index] + " " + text[match.end_index:]).lower()
    present = count_keywords_present(surrounding, RELEVANT_KEYWORDS.get(match.category, ()))
    return min(present * CONTEXT_STEP, PATTERN_CONTEXT_CAP)


def edge_position_bonus(match: PatternMatch, text: str) -> float:
    if not text:
        return 0.0
    position = match.start_index / len(text)
    return 0.05 if position < 0.2 or position > 0.8 else 0.0


def matched_length_modifier(matched_text: str) -> float:
    length = len(matched_text)
    if length < 10:
        return -0.1
    if length > 200:
        return -0.05
    if 20 <= length <= 100:
        return 0.05
    return 0.0


class ConfidenceScorer:
    """Calibrates confidences; keeps a running history per pipeline instance."""

    def __init__(self, feedback: FeedbackLog | None = None) -> None:
        self.feedback = feedback if feedback is not None else FeedbackLog()
        self._history: list[float] = []

    def explain_section(self, section: DetectedSection, context: str) -> ConfidenceBreakdown:
        """Per-factor breakdown of ``score_section`` (does not touch history)."""
        base = section.confidence / 100
        position = position_multiplier(section.category, section.start_index, len(context))
        length = length_multiplier(section.category, len(section.content))
        relevance = context_multiplier(section.category, context)
        typed = type_multiplier(section.category, section.content)
        fb = feedback_multiplier(self.feedback.acceptance_rate(section.category))
        final = _bounded(base * position * length * relevance * typed * fb, SECTION_FLOOR, 1.0)
        return ConfidenceBreakdown(
            base=round(base, 4),
            position=round(position, 4),
            length=round(length, 4),
            context=round(relevance, 4),
            type_specific=round(typed, 4),
            feedback=round(fb, 4),
            final=final,
        )

    def score_section(self, section: DetectedSection, context: str) -> float:
        """Calibrated 0.1-1.0 confidence for a section within ``context``."""
        final = self.explain_section(section, context).final
        self._history.append(final)
        return final

    def score_pattern_match(self, match: PatternMatch, text: str) -> float:
        """Calibrated 0-1 confidence for a raw match found in ``text``."""
        value = (
            match.confidence
            + specificity_bonus(match)
            + pattern_context_bonus(match, text)
            + edge_position_bonus(match, text)
            + matched_length_modifier(match.matched_text)
        )
        final = _bounded(value)
        self._history.append(final)
        return final

    def get_average_confidence(self) -> float:
        if not self._history:
            return 0.0
        return sum(self._history) / len(self._history)

    def get_confidence_stats(self) -> ConfidenceStats:
        distribution = {
            "low": sum(1 for c in self._history if c < 0.5),
            "medium": sum(1 for c in self._history if 0.5 <= c < 0.8),
            "high": sum(1 for c in self._history if c >= 0.8),
        }
        return ConfidenceStats(
            average_confidence=round(self.get_average_confidence(), 4),
            distribution=distribution,
            feedback_accuracy=round(self.feedback.overall_accuracy(), 4),
            evaluations=len(self._history),
        )

    def reset_history(self) -> None:
        self._history.clear()
