"""Tests for promptmark.extractor (thresholds, overlaps, expansion, custom patterns)."""
from __future__ import annotations

from itertools import combinations

from promptmark.extractor import (
    ExtractionOptions,
    SectionExtractor,
    cap_per_category,
    expand_to_sentence_edges,
    extraction_result_to_dict,
    merge_sections,
    resolve_overlaps,
)
from promptmark.types import DetectedSection, MergeOrigin, SectionMetadata, SegmentationOrigin

PROMPT = """You are a senior data analyst who explains things plainly.

Analyze the sales figures and write a short summary for the leadership team.

Do not speculate beyond the data. Never include customer names.

Respond in JSON with the keys summary and risks."""


def _section(
    category: str,
    start: int,
    end: int,
    confidence: int,
    text: str,
    section_id: str | None = None,
) -> DetectedSection:
    return DetectedSection(
        id=section_id or f"{category}-{start}-{end}",
        category=category,  # type: ignore[arg-type]
        content=text[start:end],
        confidence=confidence,
        start_index=start,
        end_index=end,
        rule_ids=(f"{category}.test",),
        metadata=SectionMetadata(SegmentationOrigin(0, 0.5, 0.5, 0.5)),
    )


class TestResolveOverlaps:
    TEXT = "x" * 100

    def test_same_category_close_confidence_merges(self) -> None:
        a = _section("constraints", 0, 40, 70, self.TEXT, "a")
        b = _section("constraints", 20, 60, 65, self.TEXT, "b")
        kept, resolved = resolve_overlaps([a, b], self.TEXT)
        assert resolved == 1
        assert len(kept) == 1
        merged = kept[0]
        assert merged.id == "a+b"
        assert merged.confidence == 68
        assert (merged.start_index, merged.end_index) == (0, 60)
        assert isinstance(merged.metadata.origin, MergeOrigin)
        assert merged.metadata.origin.merged_ids == ("a", "b")
        assert merged.metadata.origin.source_confidences == (70, 65)

    def test_higher_confidence_wins_across_categories(self) -> None:
        a = _section("task", 0, 40, 60, self.TEXT)
        b = _section("constraints", 20, 60, 80, self.TEXT)
        kept, resolved = resolve_overlaps([a, b], self.TEXT)
        assert resolved == 1
        assert [s.category for s in kept] == ["constraints"]

    def test_tie_keeps_existing(self) -> None:
        a = _section("task", 0, 40, 70, self.TEXT)
        b = _section("constraints", 20, 60, 70, self.TEXT)
        kept, _ = resolve_overlaps([b, a], self.TEXT)
        assert [s.category for s in kept] == ["task"]

    def test_same_category_wide_gap_does_not_merge(self) -> None:
        a = _section("role", 0, 40, 90, self.TEXT)
        b = _section("role", 30, 70, 50, self.TEXT)
        kept, _ = resolve_overlaps([a, b], self.TEXT)
        assert [(s.start_index, s.end_index) for s in kept] == [(0, 40)]

    def test_merge_gap_configurable(self) -> None:
        a = _section("role", 0, 40, 90, self.TEXT)
        b = _section("role", 30, 70, 50, self.TEXT)
        kept, _ = resolve_overlaps([a, b], self.TEXT, merge_gap=50)
        assert kept[0].confidence == 70

    def test_chain_never_leaves_overlaps(self) -> None:
        sections = [
            _section("task", 0, 30, 50, self.TEXT),
            _section("role", 25, 55, 60, self.TEXT),
            _section("task", 50, 80, 55, self.TEXT),
            _section("examples", 78, 100, 40, self.TEXT),
            _section("constraints", 10, 90, 45, self.TEXT),
        ]
        kept, _ = resolve_overlaps(sections, self.TEXT)
        for x, y in combinations(kept, 2):
            assert not x.overlaps(y)

    def test_nested_merge_flattens_ids(self) -> None:
        a = _section("task", 0, 20, 60, self.TEXT, "a")
        b = _section("task", 10, 30, 62, self.TEXT, "b")
        c = _section("task", 25, 40, 64, self.TEXT, "c")
        ab = merge_sections(a, b, self.TEXT)
        abc = merge_sections(ab, c, self.TEXT)
        assert isinstance(abc.metadata.origin, MergeOrigin)
        assert abc.metadata.origin.merged_ids == ("a", "b", "c")


class TestExpansion:
    TEXT = "Intro words here. You must not lie to anyone. End."

    def test_expands_to_sentence(self) -> None:
        start = self.TEXT.index("must")
        end = self.TEXT.index(".", start)
        section = _section("constraints", start, end, 70, self.TEXT)
        expanded = expand_to_sentence_edges(section, self.TEXT)
        assert expanded.content == "You must not lie to anyone."
        assert expanded.metadata.expanded_from == (start, end)

    def test_growth_cap_abandons_expansion(self) -> None:
        start = self.TEXT.index("not")
        section = _section("constraints", start, start + len("not"), 70, self.TEXT)
        assert expand_to_sentence_edges(section, self.TEXT) is section

    def test_side_within_cap_still_expands(self) -> None:
        start = self.TEXT.index("must")
        section = _section("constraints", start, start + len("must not"), 70, self.TEXT)
        expanded = expand_to_sentence_edges(section, self.TEXT)
        assert expanded.content == "You must not"
        assert expanded.metadata.expanded_from == (start, start + len("must not"))

    def test_far_right_edge_does_not_block_left(self) -> None:
        text = "Go. Please check the report carefully and then keep reading every remaining page of it."
        start = text.index("check")
        end = text.index("carefully") + len("carefully")
        section = _section("task", start, end, 70, text)
        expanded = expand_to_sentence_edges(section, text)
        assert expanded.content == "Please check the report carefully"
        assert (expanded.start_index, expanded.end_index) == (4, end)

    def test_far_left_edge_does_not_block_right(self) -> None:
        text = "Please keep reading every remaining page of this long report, then stop reading here."
        start = text.index("then")
        end = text.index("stop reading") + len("stop reading")
        section = _section("task", start, end, 70, text)
        expanded = expand_to_sentence_edges(section, text)
        assert expanded.content == "then stop reading here."

    def test_already_aligned(self) -> None:
        start = self.TEXT.index("You")
        end = self.TEXT.index(".", start) + 1
        section = _section("constraints", start, end, 70, self.TEXT)
        assert expand_to_sentence_edges(section, self.TEXT) is section


class TestCapPerCategory:
    def test_keeps_highest_by_position(self) -> None:
        text = "x" * 100
        sections = [
            _section("task", 0, 10, 40, text),
            _section("task", 20, 30, 90, text),
            _section("task", 40, 50, 70, text),
            _section("role", 60, 70, 10, text),
        ]
        kept = cap_per_category(sections, 2)
        assert [(s.category, s.start_index) for s in kept] == [
            ("task", 20), ("task", 40), ("role", 60),
        ]


class TestSectionExtractor:
    def test_extract_prompt(self) -> None:
        result = SectionExtractor().extract(PROMPT)
        assert result.errors == ()
        assert [s.category for s in result.sections] == [
            "role", "task", "constraints", "outputFormat",
        ]
        assert result.metadata.total_blocks == 4
        assert result.metadata.processed_blocks == 4
        for x, y in combinations(result.sections, 2):
            assert not x.overlaps(y)

    def test_threshold_drops_sections(self) -> None:
        result = SectionExtractor().extract(PROMPT, ExtractionOptions(min_confidence_threshold=101))
        assert result.sections == ()

    def test_empty_input(self) -> None:
        result = SectionExtractor().extract("")
        assert result.sections == ()
        assert result.metadata.total_blocks == 0

    def test_extract_sections_by_type(self) -> None:
        sections = SectionExtractor().extract_sections_by_type(PROMPT, "outputFormat")
        assert len(sections) == 1
        assert "JSON" in sections[0].content

    def test_serializes(self) -> None:
        payload = extraction_result_to_dict(SectionExtractor().extract(PROMPT))
        assert set(payload) == {"sections", "metadata", "errors"}
        assert payload["metadata"]["total_blocks"] == 4


class TestCustomPatterns:
    TEXT = "You are a travel planner.\n\nKeep the budget tight."

    def test_custom_pattern_adds_section(self) -> None:
        result = SectionExtractor().extract_with_custom_patterns(
            self.TEXT, {"constraints": [r"\bbudget\b"]},
        )
        custom = [s for s in result.sections if s.id.startswith("custom-")]
        assert len(custom) == 1
        assert custom[0].category == "constraints"
        assert custom[0].content == "Keep the budget tight."
        assert custom[0].metadata.origin.kind == "custom_pattern"

    def test_duplicate_of_existing_section_skipped(self) -> None:
        result = SectionExtractor().extract_with_custom_patterns(
            self.TEXT, {"role": [r"travel planner"]},
        )
        assert [s.category for s in result.sections].count("role") == 1
        assert not any(s.id.startswith("custom-") for s in result.sections)

    def test_bad_patterns_reported_not_raised(self) -> None:
        result = SectionExtractor().extract_with_custom_patterns(
            self.TEXT, {"constraints": ["("], "tone": ["calm"]},
        )
        assert {e.type for e in result.errors} == {"pattern_error"}
        assert all(e.severity == "warning" for e in result.errors)
        assert len(result.errors) == 2
