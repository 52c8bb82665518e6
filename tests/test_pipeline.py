"""End-to-end tests for promptmark.pipeline."""
from __future__ import annotations

from promptmark import PromptPipeline, SectionFeedback
from promptmark.config import PipelineConfig
from promptmark.generator import GenerationOptions, get_template
from promptmark.pipeline import pipeline_stats_to_dict

ASSISTANT_PROMPT = (
    "You are a helpful assistant. "
    "Analyze the attached report and summarize it in under 200 words."
)


class TestStructure:
    def test_role_and_task_markup(self) -> None:
        result = PromptPipeline().structure(ASSISTANT_PROMPT)
        assert result.markup == "\n".join([
            "<poml>",
            "  <role>A helpful assistant.</role>",
            "  <task>Analyze the attached report and summarize it in under 200 words.</task>",
            "</poml>",
        ])
        assert result.metadata.warnings == ()

    def test_example_pair_end_to_end(self) -> None:
        result = PromptPipeline().structure(
            "Input: 2+2 Output: 4", generation=GenerationOptions(minified=True),
        )
        assert result.markup == (
            "<poml><examples><example><input>2+2</input><output>4</output></example></examples></poml>"
        )

    def test_template_from_literal_entries(self) -> None:
        result = PromptPipeline().generate_from_template(
            [{"category": "task", "content": "Summarize the file.", "attributes": {"priority": "high"}}],
            GenerationOptions(minified=True),
        )
        assert result.markup == '<poml><task priority="high">Summarize the file.</task></poml>'

    def test_empty_prompt(self) -> None:
        pipeline = PromptPipeline()
        assert pipeline.analyze("").sections == ()
        result = pipeline.structure("", generation=GenerationOptions(minified=True))
        assert result.markup == "<poml></poml>"


class TestState:
    def test_feedback_log_is_shared(self) -> None:
        pipeline = PromptPipeline()
        assert pipeline.scorer.feedback is pipeline.context.feedback
        assert pipeline.analyzer.scorer is pipeline.scorer
        assert pipeline.extractor.analyzer is pipeline.analyzer

    def test_instances_are_isolated(self) -> None:
        first = PromptPipeline()
        second = PromptPipeline()
        analysis = first.analyze(ASSISTANT_PROMPT)
        first.reanalyze_section(
            analysis.sections[0], ASSISTANT_PROMPT,
            SectionFeedback(corrected_category="task", was_correct=False),
        )
        assert len(first.feedback) == 2
        assert len(second.feedback) == 0
        assert second.stats().analysis.total_analyses == 0

    def test_feedback_window_from_config(self) -> None:
        pipeline = PromptPipeline(PipelineConfig(feedback_window=1))
        analysis = pipeline.analyze(ASSISTANT_PROMPT)
        pipeline.reanalyze_section(
            analysis.sections[0], ASSISTANT_PROMPT,
            SectionFeedback(corrected_category="task", was_correct=False),
        )
        assert len(pipeline.feedback) == 1

    def test_stats_payload(self) -> None:
        pipeline = PromptPipeline()
        pipeline.structure(ASSISTANT_PROMPT)
        template = get_template("basic-assistant")
        assert template is not None
        pipeline.generate_from_template(template)
        payload = pipeline_stats_to_dict(pipeline.stats())
        assert payload["analysis"]["total_analyses"] == 1
        assert payload["generation"]["total_generations"] == 2
        assert payload["generation"]["sections_emitted"] == 5
        assert set(payload["confidence"]["distribution"]) == {"low", "medium", "high"}
        assert payload["rule_hits"]["role.you_are"] >= 1
