"""Template/document engine: detected sections -> component tree -> markup.

Per-category structural rules:
    role / task    <role>/<task> leaf, lead-in phrases stripped
    constraints    <constraints caption=...> holding a <list> of <item>s when
                   the text splits into two or more items, else text
    examples       <examples> holding one <example> with <input>/<output>
                   children per detected pair, else one plain <example>
    outputFormat   <output-format syntax=...> leaf
    unknown        <p type="unclassified"> leaf

All components are wrapped in a configurable root tag. ``generate`` never
raises: a failure yields ``<root><error>message</error></root>``.
"""
from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from promptmark.component import Component, component_to_dict, is_valid_name, leaf, node
from promptmark.config import PipelineConfig
from promptmark.formatter import FormattingOptions, MarkupFormatter, escape_markup
from promptmark.types import (
    DetectedSection,
    SectionCategory,
    SectionMetadata,
    TemplateOrigin,
    category_ordinal,
    is_category,
)

log = logging.getLogger(__name__)

DEFAULT_ROOT_TAG = "poml"

CATEGORY_TAGS: dict[SectionCategory, str] = {
    "role": "role",
    "task": "task",
    "constraints": "constraints",
    "examples": "examples",
    "outputFormat": "output-format",
    "unknown": "p",
}


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    root_tag: str = DEFAULT_ROOT_TAG
    include_metadata: bool = False      # generated-at / section-count / average-confidence on root
    include_confidence: bool = False    # confidence attribute on each section component
    min_confidence: int | None = None   # None -> PipelineConfig.generation_floor
    minified: bool = False
    formatting: FormattingOptions = field(default_factory=FormattingOptions)


@dataclass(frozen=True, slots=True)
class GenerationMetadata:
    sections_processed: int
    average_confidence: float
    generation_time_ms: float
    warnings: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GenerationResult:
    markup: str
    components: tuple[Component, ...]
    component_tree: Component | None
    metadata: GenerationMetadata

    @property
    def ok(self) -> bool:
        return self.component_tree is not None


@dataclass(frozen=True, slots=True)
class TemplateEntry:
    category: SectionCategory
    content: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    id: str
    name: str
    description: str
    structure: tuple[TemplateEntry, ...]


@dataclass(frozen=True, slots=True)
class GenerationStats:
    total_generations: int
    failed_generations: int
    sections_emitted: int
    average_generation_time_ms: float


BUILTIN_TEMPLATES: tuple[PromptTemplate, ...] = (
    PromptTemplate(
        id="basic-assistant",
        name="Basic Assistant",
        description="Simple role-task structure for general assistance",
        structure=(
            TemplateEntry("role", "You are a helpful AI assistant."),
            TemplateEntry("task", "Provide helpful and accurate responses to user questions."),
            TemplateEntry(
                "constraints",
                "Be concise and clear in your responses. Always be respectful and professional.",
            ),
        ),
    ),
    PromptTemplate(
        id="code-reviewer",
        name="Code Reviewer",
        description="Template for code review tasks",
        structure=(
            TemplateEntry("role", "You are an experienced software engineer and code reviewer."),
            TemplateEntry("task", "Review the provided code and provide constructive feedback."),
            TemplateEntry(
                "constraints",
                "Focus on code quality, best practices, potential bugs, and performance "
                "improvements. Be specific and actionable in your suggestions.",
            ),
            TemplateEntry(
                "outputFormat",
                "Provide feedback in markdown format with clear sections for different "
                "types of issues.",
            ),
        ),
    ),
    PromptTemplate(
        id="content-writer",
        name="Content Writer",
        description="Template for content creation tasks",
        structure=(
            TemplateEntry(
                "role",
                "You are a professional content writer with expertise in creating engaging "
                "and informative content.",
            ),
            TemplateEntry(
                "task", "Create high-quality content based on the given topic and requirements.",
            ),
            TemplateEntry(
                "constraints",
                "Ensure content is original, well-researched, and appropriate for the target "
                "audience. Follow SEO best practices when applicable.",
            ),
            TemplateEntry(
                "examples",
                "Input: Blog post about sustainable living\nOutput: Well-structured article "
                "with introduction, main points, and conclusion",
            ),
        ),
    ),
)


def get_template(template_id: str) -> PromptTemplate | None:
    return next((t for t in BUILTIN_TEMPLATES if t.id == template_id), None)


# ---------------------------------------------------------------------------
# Content cleaning
# ---------------------------------------------------------------------------

_ROLE_LEAD_IN = re.compile(
    r"^\s*(?:(?:role|persona|identity)\s*:\s*|you are\s+|you're\s+|act as\s+|your role is(?: to be)?\s+"
    r"|take on the persona of\s+|assume the role of\s+|imagine (?:that )?you(?:'re| are)\s+)",
    re.IGNORECASE,
)
_TASK_LEAD_IN = re.compile(
    r"^\s*(?:(?:task|objective|goal|instructions?)\s*:\s*"
    r"|your (?:task|job|goal|objective|mission) is(?: to)?\s+"
    r"|i (?:need|want|would like) you to\s+|please\s+)",
    re.IGNORECASE,
)
_CONSTRAINT_HEADING = re.compile(
    r"^\s*(?:constraints?|rules|requirements|guidelines|restrictions|limitations)\s*:\s*",
    re.IGNORECASE,
)
_EXAMPLE_HEADING = re.compile(
    r"^\s*(?:(?:examples?(?:\s*\d+)?)\s*:\s*|here (?:is|are) (?:an? |some )?examples?\s*:?\s*)",
    re.IGNORECASE,
)
_FORMAT_HEADING = re.compile(
    r"^\s*(?:output(?: format)?|format|response format)\s*:\s*", re.IGNORECASE,
)

_LIST_MARKER = re.compile(r"^\s*(?:[-*•+]|\d+[.)]|[a-z][.)])\s+")
_PAIR_LABEL = re.compile(
    r"(?<![A-Za-z0-9])(input|output|question|answer|q|a)\s*:", re.IGNORECASE,
)
_INPUT_LABELS = frozenset({"input", "question", "q"})

FORMAT_SYNTAXES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("json", re.compile(r"\bjson\b", re.IGNORECASE)),
    ("xml", re.compile(r"\bxml\b", re.IGNORECASE)),
    ("html", re.compile(r"\bhtml\b", re.IGNORECASE)),
    ("markdown", re.compile(r"\bmarkdown\b", re.IGNORECASE)),
    ("csv", re.compile(r"\bcsv\b", re.IGNORECASE)),
    ("yaml", re.compile(r"\bya?ml\b", re.IGNORECASE)),
    ("table", re.compile(r"\b(?:tables?|tabular)\b", re.IGNORECASE)),
    ("list", re.compile(r"\b(?:bullet(?:ed)?(?: points?| list)?|numbered list|list)\b", re.IGNORECASE)),
)


def strip_lead_ins(text: str, pattern: re.Pattern[str]) -> str:
    """Remove leading phrases matched by ``pattern`` until none remain."""
    current = text.strip()
    while True:
        stripped = pattern.sub("", current, count=1).strip()
        if stripped == current:
            return current
        current = stripped


def _capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def _clean_lead_text(text: str, pattern: re.Pattern[str]) -> str:
    cleaned = strip_lead_ins(text, pattern)
    return _capitalize_first(cleaned) if cleaned else text.strip()


def clean_role_text(text: str) -> str:
    return _clean_lead_text(text, _ROLE_LEAD_IN)


def clean_task_text(text: str) -> str:
    return _clean_lead_text(text, _TASK_LEAD_IN)


def _normalize_lines(text: str) -> str:
    lines = [line.rstrip() for line in text.strip().split("\n")]
    out: list[str] = []
    for line in lines:
        if not line.strip() and out and not out[-1].strip():
            continue
        out.append(line)
    return "\n".join(out).strip()


def clean_constraints_text(text: str) -> str:
    return _normalize_lines(strip_lead_ins(text, _CONSTRAINT_HEADING))


def clean_examples_text(text: str) -> str:
    return _normalize_lines(strip_lead_ins(text, _EXAMPLE_HEADING))


def clean_output_format_text(text: str) -> str:
    return _clean_lead_text(text, _FORMAT_HEADING)


def split_list_items(text: str) -> list[str]:
    """Split bulleted, numbered, line- or semicolon-delimited text into items."""
    lines = [line for line in text.split("\n") if line.strip()]
    marked = [line for line in lines if _LIST_MARKER.match(line)]
    items: list[str] = []
    if len(marked) >= 2:
        for line in lines:
            if _LIST_MARKER.match(line):
                items.append(_LIST_MARKER.sub("", line, count=1).strip())
            elif items and line[:1].isspace():
                items[-1] = f"{items[-1]} {line.strip()}"
            else:
                items.append(line.strip())
    elif len(lines) >= 2:
        items = [line.strip() for line in lines]
    else:
        parts = [p.strip() for p in text.split(";")]
        items = [p for p in parts if p] if len([p for p in parts if p]) >= 2 else [text.strip()]
    return [item.rstrip(";").strip() for item in items if item.rstrip(";").strip()]


def find_example_pairs(text: str) -> list[tuple[str, str]]:
    """Input/output (or Q/A) pairs found by scanning paired labels in order."""
    labels = list(_PAIR_LABEL.finditer(text))
    pairs: list[tuple[str, str]] = []
    pending: str | None = None
    for i, label in enumerate(labels):
        stop = labels[i + 1].start() if i + 1 < len(labels) else len(text)
        value = text[label.end():stop].strip().rstrip(",;").strip()
        if label.group(1).lower() in _INPUT_LABELS:
            pending = value
        elif pending is not None:
            pairs.append((pending, value))
            pending = None
    return pairs


def detect_format_syntax(text: str) -> str | None:
    for syntax, pattern in FORMAT_SYNTAXES:
        if pattern.search(text):
            return syntax
    return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _entry_from_mapping(raw: Mapping[str, Any]) -> TemplateEntry:
    category = raw.get("category", raw.get("type"))
    if not isinstance(category, str) or not is_category(category):
        raise ValueError(f"Template entry has unknown category: {category!r}")
    content = raw.get("content", "")
    if not isinstance(content, str):
        raise ValueError(f"Template entry content must be a string, got {type(content).__name__}")
    attributes = raw.get("attributes") or {}
    return TemplateEntry(category, content, {str(k): str(v) for k, v in dict(attributes).items()})  # type: ignore[arg-type]


class TemplateEngine:
    """Maps sections to a component tree and serializes it."""

    def __init__(
        self,
        formatter: MarkupFormatter | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.formatter = formatter or MarkupFormatter()
        self.config = config or PipelineConfig()
        self._generations = 0
        self._failures = 0
        self._sections_emitted = 0
        self._total_time_ms = 0.0

    # -- per-category builders -------------------------------------------

    def section_to_component(
        self,
        section: DetectedSection,
        *,
        include_confidence: bool = False,
    ) -> Component:
        """Structural component for one section (also used for previews)."""
        builder = {
            "role": self._build_role,
            "task": self._build_task,
            "constraints": self._build_constraints,
            "examples": self._build_examples,
            "outputFormat": self._build_output_format,
        }.get(section.category, self._build_unknown)
        component = builder(section)
        origin = section.metadata.origin
        if isinstance(origin, TemplateOrigin) and origin.attributes:
            component.attributes.update(origin.attributes)
        if include_confidence:
            component.attributes["confidence"] = str(section.confidence)
        return component

    def _build_role(self, section: DetectedSection) -> Component:
        return leaf(CATEGORY_TAGS["role"], clean_role_text(section.content))

    def _build_task(self, section: DetectedSection) -> Component:
        return leaf(CATEGORY_TAGS["task"], clean_task_text(section.content))

    def _build_constraints(self, section: DetectedSection) -> Component:
        text = clean_constraints_text(section.content)
        attrs = {"caption": "Constraints"}
        items = split_list_items(text)
        if len(items) >= 2:
            return node(
                CATEGORY_TAGS["constraints"],
                [node("list", [leaf("item", item) for item in items])],
                attrs,
            )
        return leaf(CATEGORY_TAGS["constraints"], text, attrs)

    def _build_examples(self, section: DetectedSection) -> Component:
        text = clean_examples_text(section.content)
        pairs = find_example_pairs(text)
        if pairs:
            examples = [
                node("example", [leaf("input", given), leaf("output", expected)])
                for given, expected in pairs
            ]
        else:
            examples = [leaf("example", text)]
        return node(CATEGORY_TAGS["examples"], examples)

    def _build_output_format(self, section: DetectedSection) -> Component:
        text = clean_output_format_text(section.content)
        syntax = detect_format_syntax(text)
        return leaf(CATEGORY_TAGS["outputFormat"], text, {"syntax": syntax} if syntax else None)

    def _build_unknown(self, section: DetectedSection) -> Component:
        return leaf(CATEGORY_TAGS["unknown"], section.content.strip(), {"type": "unclassified"})

    # -- entry points ----------------------------------------------------

    def generate(
        self,
        sections: Sequence[DetectedSection],
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        started = time.perf_counter()
        floor = options.min_confidence if options.min_confidence is not None else self.config.generation_floor
        warnings: list[str] = []
        self._generations += 1
        try:
            kept: list[DetectedSection] = []
            for section in sections:
                if section.confidence < floor:
                    message = (
                        f"Skipped {section.category} section {section.id}: "
                        f"confidence {section.confidence} below {floor}"
                    )
                    log.warning(message)
                    warnings.append(message)
                    continue
                kept.append(section)
            kept.sort(key=lambda s: (category_ordinal(s.category), s.start_index))

            components = [
                self.section_to_component(s, include_confidence=options.include_confidence)
                for s in kept
            ]
            average = round(sum(s.confidence for s in kept) / len(kept), 2) if kept else 0.0
            root_attrs: dict[str, str] = {}
            if options.include_metadata:
                root_attrs = {
                    "generated-at": datetime.now(UTC).isoformat(timespec="seconds"),
                    "section-count": str(len(kept)),
                    "average-confidence": f"{average:g}",
                }
            tree = node(options.root_tag, components, root_attrs)
            problems = self.formatter.validate(tree)
            if problems:
                raise ValueError(f"Invalid component tree: {'; '.join(problems[:5])}")
            if options.minified:
                markup = self.formatter.format_minified(tree)
            else:
                markup = self.formatter.format(tree, options.formatting)
        except Exception as exc:
            return self._error_result(exc, options, started, warnings)

        elapsed = (time.perf_counter() - started) * 1000
        self._sections_emitted += len(kept)
        self._total_time_ms += elapsed
        return GenerationResult(
            markup=markup,
            components=tuple(components),
            component_tree=tree,
            metadata=GenerationMetadata(
                sections_processed=len(kept),
                average_confidence=average,
                generation_time_ms=elapsed,
                warnings=tuple(warnings),
            ),
        )

    def generate_from_template(
        self,
        template: PromptTemplate | Sequence[TemplateEntry | Mapping[str, Any]],
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        """Generate from literal ``{category, content, attributes}`` entries at full confidence."""
        options = options or GenerationOptions()
        started = time.perf_counter()
        template_id = template.id if isinstance(template, PromptTemplate) else "inline"
        raw_entries = template.structure if isinstance(template, PromptTemplate) else template
        try:
            entries = [
                e if isinstance(e, TemplateEntry) else _entry_from_mapping(e)
                for e in raw_entries
            ]
            sections: list[DetectedSection] = []
            cursor = 0
            for i, entry in enumerate(entries):
                if not entry.content.strip():
                    continue
                end = cursor + len(entry.content)
                sections.append(DetectedSection(
                    id=f"template-{i}-{entry.category}",
                    category=entry.category,
                    content=entry.content,
                    confidence=100,
                    start_index=cursor,
                    end_index=end,
                    rule_ids=(),
                    metadata=SectionMetadata(TemplateOrigin(
                        template_id=template_id,
                        entry_index=i,
                        attributes=dict(entry.attributes),
                    )),
                ))
                cursor = end + 2
        except Exception as exc:
            self._generations += 1
            return self._error_result(exc, options, started, [])
        return self.generate(sections, options)

    def _error_result(
        self,
        exc: Exception,
        options: GenerationOptions,
        started: float,
        warnings: list[str],
    ) -> GenerationResult:
        message = str(exc) or type(exc).__name__
        log.exception("generation failed: %s", message)
        self._failures += 1
        root = options.root_tag if is_valid_name(options.root_tag) else DEFAULT_ROOT_TAG
        return GenerationResult(
            markup=f"<{root}><error>{escape_markup(message)}</error></{root}>",
            components=(),
            component_tree=None,
            metadata=GenerationMetadata(
                sections_processed=0,
                average_confidence=0.0,
                generation_time_ms=(time.perf_counter() - started) * 1000,
                warnings=tuple(warnings + [message]),
            ),
        )

    def get_generation_stats(self) -> GenerationStats:
        succeeded = self._generations - self._failures
        return GenerationStats(
            total_generations=self._generations,
            failed_generations=self._failures,
            sections_emitted=self._sections_emitted,
            average_generation_time_ms=round(self._total_time_ms / succeeded, 3) if succeeded else 0.0,
        )


def generation_result_to_dict(result: GenerationResult) -> dict[str, Any]:
    return {
        "markup": result.markup,
        "components": [component_to_dict(c) for c in result.components],
        "metadata": {
            "sections_processed": result.metadata.sections_processed,
            "average_confidence": result.metadata.average_confidence,
            "generation_time_ms": round(result.metadata.generation_time_ms, 3),
            "warnings": list(result.metadata.warnings),
        },
    }
