"""Tests for promptmark.pattern_matcher."""
from __future__ import annotations

import pytest

from promptmark.pattern_matcher import PatternMatcher, raw_score
from promptmark.rules import compile_rule_payload
from promptmark.types import CATEGORY_ORDER

TASK_SENTENCE = "Analyze the attached report and summarize it in under 200 words."


class TestRawScore:
    def test_full_coverage_with_keyword(self) -> None:
        assert raw_score(10, 10, "you are", "role") == 1.0

    def test_coverage_capped_without_keyword(self) -> None:
        assert raw_score(10, 10, "nothing here", "role") == pytest.approx(0.8)

    def test_partial_coverage(self) -> None:
        assert raw_score(15, 64, "under 200 words", "constraints") == pytest.approx(15 / 64 * 2 + 0.2)

    def test_empty_text(self) -> None:
        assert raw_score(0, 0, "", "task") == 0.0


class TestPatternMatcher:
    def test_role_sentence(self) -> None:
        matches = PatternMatcher().match("You are a helpful assistant.")
        assert matches[0].category == "role"
        assert matches[0].confidence == 1.0
        assert matches[0].rule_ids == ("role.you_are",)

    def test_multiple_categories_sorted(self) -> None:
        matches = PatternMatcher().match(TASK_SENTENCE)
        assert [m.category for m in matches] == ["task", "constraints"]
        assert matches[0].confidence == 1.0
        assert matches[1].matched_text == "under 200 words"

    def test_io_pair_is_examples(self) -> None:
        matches = PatternMatcher().match("Input: 2+2 Output: 4")
        assert [m.category for m in matches] == ["examples"]
        assert matches[0].confidence == 1.0

    def test_blank_text(self) -> None:
        assert PatternMatcher().match("   ") == []

    def test_acceptance_floor(self) -> None:
        matches = PatternMatcher(acceptance_floor=0.9).match(TASK_SENTENCE)
        assert [m.category for m in matches] == ["task"]

    def test_offsets_are_block_relative(self) -> None:
        text = "Some preamble text. Please respond in JSON."
        match = PatternMatcher().best_for_category(text, "outputFormat")
        assert match is not None
        assert text[match.start_index:match.end_index] == match.matched_text

    def test_custom_rule_table(self) -> None:
        rules = compile_rule_payload({"task": [{"id": "task.kindly", "pattern": "\\bkindly\\b"}]})
        matcher = PatternMatcher(rules)
        matches = matcher.match("Kindly tidy the room.")
        assert [m.rule_ids for m in matches] == [("task.kindly",)]

    def test_unterminated_block_covers_whole_text(self) -> None:
        text = "never " * 2000
        match = PatternMatcher().best_for_category(text, "constraints")
        assert match is not None
        assert match.rule_ids == ("constraints.negation",)
        assert (match.start_index, match.end_index) == (0, len(text) - 1)
        assert match.confidence == 1.0


class TestMatcherStats:
    def test_counts_accumulate_and_reset(self) -> None:
        matcher = PatternMatcher()
        matcher.match("You are a helpful assistant.")
        matcher.match(TASK_SENTENCE)
        stats = matcher.get_pattern_stats()
        assert list(stats) == list(CATEGORY_ORDER)
        assert stats["role"] == 1
        assert stats["task"] == 1
        assert stats["constraints"] == 1
        assert stats["unknown"] == 0
        assert matcher.get_rule_stats()["role.you_are"] == 1

        matcher.reset_stats()
        assert sum(matcher.get_pattern_stats().values()) == 0
        assert matcher.get_rule_stats() == {}

    def test_best_for_category_does_not_count(self) -> None:
        matcher = PatternMatcher()
        matcher.best_for_category("You are kind.", "role")
        assert matcher.get_pattern_stats()["role"] == 0
