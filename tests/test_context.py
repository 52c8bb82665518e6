"""Tests for promptmark.context (block disambiguation and feedback)."""
from __future__ import annotations

import pytest

from promptmark.context import (
    BlockCandidates,
    ContextAnalyzer,
    conflict_penalty,
    length_bonus,
    sequence_bonus,
)
from promptmark.feedback import FeedbackLog
from promptmark.types import PatternMatch, TextBlock


def _match(category: str, confidence: float) -> PatternMatch:
    return PatternMatch(category, confidence, "x", (f"{category}.test",), 0, 1)  # type: ignore[arg-type]


class TestAdjustments:
    def test_sequence_bonus(self) -> None:
        assert sequence_bonus("role", 0) == pytest.approx(0.1)
        assert sequence_bonus("outputFormat", 0) == pytest.approx(0.02)
        assert sequence_bonus("role", 9) == 0.0

    def test_conflict_penalty_counts_repeats(self) -> None:
        assert conflict_penalty("task", "the task") == 0.0
        assert conflict_penalty("task", "task one, task two, task three") == pytest.approx(0.1)

    def test_conflict_penalty_uses_lowercased_name(self) -> None:
        assert conflict_penalty("outputFormat", "outputformat outputformat") == pytest.approx(0.05)

    def test_length_bonus(self) -> None:
        assert length_bonus("role", 60) == 0.05
        assert length_bonus("role", 5) == 0.0


class TestDisambiguate:
    def test_unclamped_score_breaks_ties(self) -> None:
        content = "x" * 64
        entry = BlockCandidates(
            block=TextBlock(content, 0, 64),
            block_index=2,
            candidates=(_match("task", 1.0), _match("constraints", 1.0)),
        )
        [decision] = ContextAnalyzer().disambiguate([entry], content)
        assert decision.best_match is not None
        assert decision.best_match.category == "constraints"
        assert decision.confidence == 1.0
        assert decision.scores["constraints"] == pytest.approx(1.15)
        assert decision.scores["task"] == pytest.approx(1.13)

    def test_block_without_candidates(self) -> None:
        entry = BlockCandidates(block=TextBlock("hello", 0, 5), block_index=0, candidates=())
        [decision] = ContextAnalyzer().disambiguate([entry], "hello")
        assert decision.best_match is None
        assert decision.confidence == 0.0

    def test_confidence_floor_at_zero(self) -> None:
        text = "role " * 30
        entry = BlockCandidates(
            block=TextBlock("x", 0, 1), block_index=5, candidates=(_match("role", 0.3),),
        )
        [decision] = ContextAnalyzer().disambiguate([entry], text)
        assert decision.confidence == 0.0


class TestAnalyzeWithContext:
    def test_surrounding_keywords_help(self) -> None:
        analyzer = ContextAnalyzer()
        candidates = [_match("examples", 0.5), _match("task", 0.5)]
        decision = analyzer.analyze_with_context(
            "x" * 60, "Here is an example and a sample", "another illustration", candidates,
        )
        assert decision.best_match is not None
        assert decision.best_match.category == "examples"
        assert decision.scores["examples"] == pytest.approx(0.5 + 0.06 + 0.05)


class TestRecordFeedback:
    def test_correction_records_both_categories(self) -> None:
        feedback = FeedbackLog()
        analyzer = ContextAnalyzer(feedback)
        records = analyzer.record_feedback("text", "task", "constraints", False, original_confidence=70)
        assert [(r.category, r.was_accepted) for r in records] == [
            ("task", False), ("constraints", True),
        ]
        assert feedback.acceptance_rate("task") == 0.0
        assert feedback.acceptance_rate("constraints") == 1.0

    def test_confirmation_records_one(self) -> None:
        analyzer = ContextAnalyzer()
        records = analyzer.record_feedback("text", "role", "role", True)
        assert len(records) == 1
        assert analyzer.feedback.acceptance_rate("role") == 1.0
