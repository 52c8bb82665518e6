"""One explicit object owning every piece of mutable pipeline state.

Match counters, confidence history, the feedback log and analysis counters
all live on a ``PromptPipeline``. Instances share nothing; concurrent callers
should each build their own.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from promptmark.analyzer import (
    AnalysisStats,
    SectionFeedback,
    TextAnalyzer,
    analysis_stats_to_dict,
)
from promptmark.confidence import ConfidenceScorer, ConfidenceStats
from promptmark.config import PipelineConfig
from promptmark.context import ContextAnalyzer
from promptmark.extractor import ExtractionOptions, ExtractionResult, SectionExtractor
from promptmark.feedback import FeedbackLog
from promptmark.formatter import FormattingOptions, MarkupFormatter
from promptmark.generator import (
    GenerationOptions,
    GenerationResult,
    GenerationStats,
    PromptTemplate,
    TemplateEngine,
    TemplateEntry,
)
from promptmark.pattern_matcher import PatternMatcher
from promptmark.rules import RuleTable
from promptmark.types import AnalysisResult, DetectedSection


@dataclass(frozen=True, slots=True)
class PipelineStats:
    analysis: AnalysisStats
    confidence: ConfidenceStats
    generation: GenerationStats
    rule_hits: dict[str, int]


class PromptPipeline:
    def __init__(
        self,
        config: PipelineConfig | None = None,
        rules: RuleTable | None = None,
        formatting: FormattingOptions | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.feedback = FeedbackLog(self.config.feedback_window)
        self.matcher = PatternMatcher(rules, acceptance_floor=self.config.acceptance_floor)
        self.scorer = ConfidenceScorer(self.feedback)
        self.context = ContextAnalyzer(self.feedback)
        self.analyzer = TextAnalyzer(self.matcher, self.context, self.scorer, self.config)
        self.extractor = SectionExtractor(self.analyzer, self.config)
        self.formatter = MarkupFormatter(formatting)
        self.engine = TemplateEngine(self.formatter, self.config)

    def analyze(self, text: str) -> AnalysisResult:
        return self.analyzer.analyze(text)

    def reanalyze_section(
        self,
        section: DetectedSection,
        full_text: str,
        feedback: SectionFeedback | None = None,
    ) -> DetectedSection:
        return self.analyzer.reanalyze_section(section, full_text, feedback)

    def extract(self, text: str, options: ExtractionOptions | None = None) -> ExtractionResult:
        return self.extractor.extract(text, options)

    def generate(
        self,
        sections: tuple[DetectedSection, ...] | list[DetectedSection],
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        return self.engine.generate(sections, options)

    def generate_from_template(
        self,
        template: PromptTemplate | Sequence[TemplateEntry | Mapping[str, Any]],
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        return self.engine.generate_from_template(template, options)

    def structure(
        self,
        text: str,
        extraction: ExtractionOptions | None = None,
        generation: GenerationOptions | None = None,
    ) -> GenerationResult:
        """Extract sections from raw text and render them as markup."""
        result = self.extractor.extract(text, extraction)
        return self.engine.generate(result.sections, generation)

    def stats(self) -> PipelineStats:
        return PipelineStats(
            analysis=self.analyzer.get_analysis_stats(),
            confidence=self.scorer.get_confidence_stats(),
            generation=self.engine.get_generation_stats(),
            rule_hits=self.matcher.get_rule_stats(),
        )


def pipeline_stats_to_dict(stats: PipelineStats) -> dict[str, Any]:
    return {
        "analysis": analysis_stats_to_dict(stats.analysis),
        "confidence": {
            "average_confidence": stats.confidence.average_confidence,
            "distribution": dict(stats.confidence.distribution),
            "feedback_accuracy": stats.confidence.feedback_accuracy,
            "evaluations": stats.confidence.evaluations,
        },
        "generation": {
            "total_generations": stats.generation.total_generations,
            "failed_generations": stats.generation.failed_generations,
            "sections_emitted": stats.generation.sections_emitted,
            "average_generation_time_ms": stats.generation.average_generation_time_ms,
        },
        "rule_hits": dict(stats.rule_hits),
    }
