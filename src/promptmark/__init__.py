"""Prompt structuring: typed section detection and markup generation."""

from promptmark.analyzer import SectionFeedback, TextAnalyzer
from promptmark.component import Component
from promptmark.config import PipelineConfig, load_config
from promptmark.extractor import ExtractionOptions, ExtractionResult, SectionExtractor
from promptmark.formatter import FormattingOptions, MarkupFormatter, parse_markup
from promptmark.generator import (
    BUILTIN_TEMPLATES,
    GenerationOptions,
    GenerationResult,
    PromptTemplate,
    TemplateEngine,
    TemplateEntry,
    get_template,
)
from promptmark.pipeline import PromptPipeline
from promptmark.rules import load_rule_table
from promptmark.types import (
    CATEGORY_ORDER,
    AnalysisResult,
    DetectedSection,
    ErrorEntry,
    SectionCategory,
)

__all__ = [
    "BUILTIN_TEMPLATES",
    "CATEGORY_ORDER",
    "AnalysisResult",
    "Component",
    "DetectedSection",
    "ErrorEntry",
    "ExtractionOptions",
    "ExtractionResult",
    "FormattingOptions",
    "GenerationOptions",
    "GenerationResult",
    "MarkupFormatter",
    "PipelineConfig",
    "PromptPipeline",
    "PromptTemplate",
    "SectionCategory",
    "SectionExtractor",
    "SectionFeedback",
    "TemplateEngine",
    "TemplateEntry",
    "TextAnalyzer",
    "get_template",
    "load_config",
    "load_rule_table",
    "parse_markup",
]
