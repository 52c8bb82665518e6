"""Tests for promptmark.analyzer (segmentation, analysis, re-analysis)."""
from __future__ import annotations

import time

import pytest

from promptmark.analyzer import (
    SectionFeedback,
    TextAnalyzer,
    aggregate_confidence,
    round_half_up,
)
from promptmark.config import PipelineConfig
from promptmark.types import (
    DetectedSection,
    ReanalysisOrigin,
    SectionMetadata,
    SegmentationOrigin,
    analysis_result_to_dict,
)

ASSISTANT_PROMPT = (
    "You are a helpful assistant. "
    "Analyze the attached report and summarize it in under 200 words."
)

MULTI_PARAGRAPH = """You are a senior data analyst who explains things plainly.

Analyze the sales figures and write a short summary for the leadership team.

Do not speculate beyond the data. Never include customer names.

Respond in JSON with the keys summary and risks."""


class TestHelpers:
    def test_round_half_up(self) -> None:
        assert round_half_up(67.5) == 68
        assert round_half_up(66.5) == 67
        assert round_half_up(0.4) == 0

    def test_aggregate_confidence(self) -> None:
        assert aggregate_confidence([]) == 0

    def test_aggregate_confidence_diversity_bonus(self) -> None:
        sections = [_section("role", 60, 0), _section("task", 70, 20)]
        # mean 65 + 2 categories * 5
        assert aggregate_confidence(sections) == 75

    def test_aggregate_confidence_capped(self) -> None:
        sections = [_section("role", 100, 0), _section("task", 95, 20)]
        assert aggregate_confidence(sections) == 100


def _section(category: str, confidence: int, start: int, content: str = "some section text") -> DetectedSection:
    return DetectedSection(
        id=f"{category}-{start}-{start + len(content)}",
        category=category,  # type: ignore[arg-type]
        content=content,
        confidence=confidence,
        start_index=start,
        end_index=start + len(content),
        rule_ids=(),
        metadata=SectionMetadata(SegmentationOrigin(0, 0.5, 0.5, 0.5)),
    )


class TestSegment:
    def test_paragraphs(self) -> None:
        blocks = TextAnalyzer().segment(MULTI_PARAGRAPH)
        assert len(blocks) == 4
        for block in blocks:
            assert MULTI_PARAGRAPH[block.start_index:block.end_index] == block.content

    def test_long_single_paragraph_splits_into_sentences(self) -> None:
        text = (
            "You are a meticulous research assistant with a background in economics. "
            "Summarize the attached paper for a general audience."
        )
        blocks = TextAnalyzer().segment(text)
        assert [b.content for b in blocks] == [
            "You are a meticulous research assistant with a background in economics.",
            "Summarize the attached paper for a general audience.",
        ]

    def test_short_block_split_only_when_sentences_diverge(self) -> None:
        analyzer = TextAnalyzer()
        assert len(analyzer.segment(ASSISTANT_PROMPT)) == 2
        same = "Write a poem. Write a haiku."
        assert [b.content for b in analyzer.segment(same)] == [same]

    def test_sentence_fallback_threshold_is_configurable(self) -> None:
        text = "Write a poem. Write a haiku."
        analyzer = TextAnalyzer(config=PipelineConfig(sentence_fallback_min_chars=10))
        assert len(analyzer.segment(text)) == 2


class TestAnalyze:
    def test_role_and_task_detected(self) -> None:
        result = TextAnalyzer().analyze(ASSISTANT_PROMPT)
        assert result.errors == ()
        by_category = {s.category: s for s in result.sections}
        assert set(by_category) == {"role", "task"}
        assert by_category["role"].content == "You are a helpful assistant."
        assert by_category["role"].confidence >= 50
        assert by_category["task"].confidence >= 50
        assert by_category["role"].start_index < by_category["task"].start_index
        assert 0 <= result.confidence <= 100

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_blank_input(self, text: str) -> None:
        result = TextAnalyzer().analyze(text)
        assert result.sections == ()
        assert result.confidence == 0
        assert result.errors == ()

    def test_multi_paragraph_categories(self) -> None:
        result = TextAnalyzer().analyze(MULTI_PARAGRAPH)
        assert [s.category for s in result.sections] == [
            "role", "task", "constraints", "outputFormat",
        ]

    def test_sections_are_faithful_spans(self) -> None:
        result = TextAnalyzer().analyze(MULTI_PARAGRAPH)
        for section in result.sections:
            assert MULTI_PARAGRAPH[section.start_index:section.end_index] == section.content
            assert 0 <= section.confidence <= 100
            assert section.metadata.origin.kind == "segmentation"

    def test_deterministic(self) -> None:
        first = analysis_result_to_dict(TextAnalyzer().analyze(MULTI_PARAGRAPH))
        second = analysis_result_to_dict(TextAnalyzer().analyze(MULTI_PARAGRAPH))
        first.pop("processing_time_ms")
        second.pop("processing_time_ms")
        assert first == second

    def test_unclassifiable_text_has_no_sections(self) -> None:
        result = TextAnalyzer().analyze("Lorem ipsum dolor sit amet.")
        assert result.sections == ()
        assert result.confidence == 0

    def test_internal_failure_becomes_error_entry(self, monkeypatch: pytest.MonkeyPatch) -> None:
        analyzer = TextAnalyzer()

        def boom(text: str) -> list:
            raise RuntimeError("segmenter exploded")

        monkeypatch.setattr(analyzer, "segment", boom)
        result = analyzer.analyze("You are a helpful assistant.")
        assert result.sections == ()
        assert result.confidence == 0
        assert len(result.errors) == 1
        assert result.errors[0].type == "analysis_error"
        assert "segmenter exploded" in result.errors[0].message

    def test_stats(self) -> None:
        analyzer = TextAnalyzer()
        analyzer.analyze(ASSISTANT_PROMPT)
        analyzer.analyze("")
        stats = analyzer.get_analysis_stats()
        assert stats.total_analyses == 1
        assert stats.pattern_stats["role"] >= 1
        assert 0.0 < stats.average_confidence <= 1.0


class TestLongInput:
    @pytest.mark.parametrize("word", ["json ", "never "])
    def test_unterminated_block_stays_fast(self, word: str) -> None:
        text = (word * 3000)[:10000]
        started = time.perf_counter()
        result = TextAnalyzer().analyze(text)
        elapsed = time.perf_counter() - started
        assert result.errors == ()
        assert len(result.sections) == 1
        assert elapsed < 2.0


class TestReanalyze:
    def _role_section(self, analyzer: TextAnalyzer) -> DetectedSection:
        result = analyzer.analyze(MULTI_PARAGRAPH)
        return next(s for s in result.sections if s.category == "role")

    def test_user_correction_wins(self) -> None:
        analyzer = TextAnalyzer()
        section = self._role_section(analyzer)
        corrected = analyzer.reanalyze_section(
            section, MULTI_PARAGRAPH, SectionFeedback(corrected_category="task", was_correct=False),
        )
        assert corrected.category == "task"
        assert corrected.confidence == 100
        origin = corrected.metadata.origin
        assert isinstance(origin, ReanalysisOrigin)
        assert origin.user_corrected is True
        assert origin.previous_category == "role"
        assert analyzer.context.feedback.acceptance_rate("role") == 0.0
        assert analyzer.context.feedback.acceptance_rate("task") == 1.0

    def test_without_feedback_uses_context(self) -> None:
        analyzer = TextAnalyzer()
        section = self._role_section(analyzer)
        again = analyzer.reanalyze_section(section, MULTI_PARAGRAPH)
        assert again.category == "role"
        assert again.start_index == section.start_index
        assert isinstance(again.metadata.origin, ReanalysisOrigin)
        assert again.metadata.origin.user_corrected is False

    def test_unknown_feedback_category_ignored(self) -> None:
        analyzer = TextAnalyzer()
        section = self._role_section(analyzer)
        again = analyzer.reanalyze_section(
            section, MULTI_PARAGRAPH,
            SectionFeedback(corrected_category="tone", was_correct=False),  # type: ignore[arg-type]
        )
        assert again.category == "role"
        assert len(analyzer.context.feedback) == 0

    def test_no_candidates_keeps_category(self) -> None:
        analyzer = TextAnalyzer()
        text = "Lorem ipsum dolor sit amet."
        section = _section("examples", 55, 0, text)
        again = analyzer.reanalyze_section(section, text)
        assert again.category == "examples"
        assert again.confidence == 55
