"""Declarative rule tables for section detection and scoring.

Every per-category table in the pipeline lives here as data: the pattern
rules the matcher evaluates, the keywords that qualify a match, the
length bands and expected positions the scorer uses, and the content
heuristics that nudge a section's confidence. Adding a category means
adding rows, not branches.

Rule extents:
    match    - the regex span itself
    sentence - each hit grown to the sentence (or line) containing it
    block    - from the hit to the end of the scanned text

Rule files (JSON) have the shape::

    {"constraints": [{"id": "constraints.house_style",
                      "pattern": "\\\\bhouse style\\\\b",
                      "extent": "sentence"}]}
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from promptmark.io_utils import load_json
from promptmark.types import DETECTABLE_CATEGORIES, SectionCategory, is_category

type RuleExtent = Literal["match", "sentence", "block"]
type RuleTable = dict[SectionCategory, tuple[PatternRule, ...]]

_EXTENTS: frozenset[str] = frozenset({"match", "sentence", "block"})


@dataclass(frozen=True, slots=True)
class PatternRule:
    """One independently testable detection rule."""

    rule_id: str
    category: SectionCategory
    pattern: re.Pattern[str]
    extent: RuleExtent = "sentence"

    def __post_init__(self) -> None:
        if self.extent not in _EXTENTS:
            raise ValueError(f"Rule {self.rule_id}: unknown extent {self.extent!r}")
        if not is_category(self.category) or self.category == "unknown":
            raise ValueError(f"Rule {self.rule_id}: invalid category {self.category!r}")


@dataclass(frozen=True, slots=True)
class LengthBand:
    min: int
    max: int
    optimal: int

    def contains(self, length: int) -> bool:
        return self.min <= length <= self.max


def _rule(
    rule_id: str,
    category: SectionCategory,
    pattern: str,
    extent: RuleExtent = "sentence",
    flags: int = 0,
) -> PatternRule:
    return PatternRule(rule_id, category, re.compile(pattern, flags), extent)


# ---------------------------------------------------------------------------
# Pattern rules - evaluated against lower-cased text
# ---------------------------------------------------------------------------

_HEADING = re.MULTILINE

ROLE_RULES: tuple[PatternRule, ...] = (
    _rule("role.heading", "role", r"^[ \t]*(?:role|persona|identity)[ \t]*:", "block", _HEADING),
    _rule("role.you_are", "role", r"\byou(?: are|'re)\b"),
    _rule("role.act_as", "role", r"\bact as\b"),
    _rule("role.assume_role", "role", r"\bassume (?:the )?(?:role|identity)\b"),
    _rule("role.persona", "role", r"\btake on the persona of\b"),
    _rule("role.your_role", "role", r"\byour role is\b"),
    _rule("role.imagine", "role", r"\bimagine (?:that )?you(?:'re| are)\b"),
    _rule("role.as_a", "role", r"\bas an? \w+(?: \w+)?", "match"),
)

TASK_RULES: tuple[PatternRule, ...] = (
    _rule(
        "task.heading", "task",
        r"^[ \t]*(?:task|objective|goal|instructions?)[ \t]*:", "block", _HEADING,
    ),
    _rule("task.your_task", "task", r"\byour (?:task|job|goal|objective|mission) is\b"),
    _rule("task.i_need", "task", r"\bi (?:need|want|would like) you to\b"),
    _rule(
        "task.action_verb", "task",
        r"\b(?:analy[sz]e|create|generate|write|develop|design|summari[sz]e|explain"
        r"|review|translate|build|draft|compose|classify|extract|identify|evaluate"
        r"|compare|describe|answer|rewrite|plan)\b",
    ),
    _rule("task.please", "task", r"\bplease\b"),
)

CONSTRAINT_RULES: tuple[PatternRule, ...] = (
    _rule(
        "constraints.heading", "constraints",
        r"^[ \t]*(?:constraints?|rules|requirements|guidelines|restrictions|limitations)[ \t]*:",
        "block", _HEADING,
    ),
    _rule(
        "constraints.negation", "constraints",
        r"\b(?:don't|do not|never|avoid|must not|should not|shouldn't|cannot|can't|refrain from)\b",
    ),
    _rule(
        "constraints.limit", "constraints",
        r"\b(?:within|under|no more than|at most|maximum(?: of)?|up to|less than|fewer than)"
        r"\s+\d+\s+(?:words?|sentences?|characters?|paragraphs?|lines?|bullet points?|items?)\b",
        "match",
    ),
    _rule(
        "constraints.scope", "constraints",
        r"\b(?:only use|only respond|stick to|limit (?:yourself|your (?:answer|response))"
        r"|ensure that|make sure|always)\b",
    ),
    _rule("constraints.must", "constraints", r"\b(?:must|should) (?:always |only |be |not )"),
)

EXAMPLE_RULES: tuple[PatternRule, ...] = (
    _rule(
        "examples.heading", "examples",
        r"^[ \t]*examples?(?:[ \t]*\d+)?[ \t]*:", "block", _HEADING,
    ),
    _rule("examples.io_pair", "examples", r"\binput\s*:[\s\S]*?\boutput\s*:[^\n]*", "match"),
    _rule(
        "examples.qa_pair", "examples",
        r"(?<![a-z0-9])q(?:uestion)?\s*:[\s\S]*?(?<![a-z0-9])a(?:nswer)?\s*:[^\n]*", "match",
    ),
    _rule("examples.for_example", "examples", r"\b(?:for example|for instance)\b|\be\.g\."),
    _rule("examples.here_is", "examples", r"\bhere (?:is|are) (?:an? |some )?(?:examples?|samples?)\b", "block"),
    _rule("examples.ordinal", "examples", r"\b(?:first|second|third|another) example\b"),
    _rule("examples.such_as", "examples", r"\bsuch as\b"),
)

FORMAT_RULES: tuple[PatternRule, ...] = (
    _rule(
        "outputFormat.heading", "outputFormat",
        r"^[ \t]*(?:output(?: format)?|format|response format)[ \t]*:", "block", _HEADING,
    ),
    _rule("outputFormat.syntax", "outputFormat", r"\b(?:json|xml|csv|markdown|yaml|html)\b"),
    _rule(
        "outputFormat.layout", "outputFormat",
        r"\b(?:bullet points|numbered list|table format|as a table|step-by-step)\b",
    ),
    _rule(
        "outputFormat.respond", "outputFormat",
        r"\b(?:respond|reply|format your (?:answer|response)|structure your (?:answer|response)"
        r"|return (?:the|your) (?:answer|result|output))\b",
    ),
    _rule("outputFormat.style", "outputFormat", r"\b(?:concise|detailed)\b", "match"),
)

DEFAULT_RULES: RuleTable = {
    "role": ROLE_RULES,
    "task": TASK_RULES,
    "constraints": CONSTRAINT_RULES,
    "examples": EXAMPLE_RULES,
    "outputFormat": FORMAT_RULES,
}

# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

# Category-defining keywords: a match whose text contains one earns +0.2.
DEFINING_KEYWORDS: dict[SectionCategory, tuple[str, ...]] = {
    "role": ("you are", "you're", "act as", "role", "persona", "assistant", "expert"),
    "task": (
        "task", "objective", "goal", "analyze", "analyse", "create", "generate",
        "write", "summarize", "summarise", "please", "need you to",
    ),
    "constraints": (
        "don't", "do not", "never", "avoid", "must", "limit", "only", "ensure",
        "constraint", "rule", "restrict", "maximum", "no more than", "words",
    ),
    "examples": ("example", "for instance", "such as", "input:", "output:", "sample", "e.g."),
    "outputFormat": (
        "format", "json", "xml", "csv", "markdown", "yaml", "html", "table",
        "bullet", "respond", "output",
    ),
    "unknown": (),
}

# Keywords whose presence anywhere in the surrounding context supports a category.
RELEVANT_KEYWORDS: dict[SectionCategory, tuple[str, ...]] = {
    "role": ("you", "are", "act", "role", "persona", "character", "assistant"),
    "task": ("analyze", "create", "generate", "write", "develop", "task", "objective", "goal"),
    "constraints": ("don't", "avoid", "never", "must", "limit", "restrict", "constraint", "rule"),
    "examples": ("example", "instance", "sample", "demonstration", "illustration"),
    "outputFormat": ("format", "structure", "json", "xml", "respond", "present", "output"),
    "unknown": (),
}

# ---------------------------------------------------------------------------
# Scoring tables
# ---------------------------------------------------------------------------

EXPECTED_POSITIONS: dict[SectionCategory, float] = {
    "role": 0.2,
    "task": 0.4,
    "constraints": 0.6,
    "examples": 0.7,
    "outputFormat": 0.8,
    "unknown": 0.5,
}

LENGTH_BANDS: dict[SectionCategory, LengthBand] = {
    "role": LengthBand(20, 150, 60),
    "task": LengthBand(30, 300, 100),
    "constraints": LengthBand(20, 200, 80),
    "examples": LengthBand(50, 500, 150),
    "outputFormat": LengthBand(15, 100, 40),
    "unknown": LengthBand(10, 1000, 100),
}

# Content tests: a hit nudges confidence up 5%, a miss down 5%.
TYPE_HEURISTICS: dict[SectionCategory, re.Pattern[str]] = {
    "role": re.compile(r"\b(?:you|your|i|my)\b", re.IGNORECASE),
    "task": re.compile(
        r"\b(?:analy[sz]e|create|generate|write|develop|design|build|summari[sz]e)\b",
        re.IGNORECASE,
    ),
    "constraints": re.compile(
        r"(?:\b(?:don't|never|avoid|must not|cannot|shouldn't)\b)", re.IGNORECASE,
    ),
    "examples": re.compile(r"\b(?:example|for instance|such as|like|sample)\b", re.IGNORECASE),
    "outputFormat": re.compile(
        r"\b(?:json|xml|format|structure|response|output)\b", re.IGNORECASE,
    ),
}


def rule_count(table: RuleTable) -> int:
    return sum(len(rules) for rules in table.values())


def merge_rule_tables(base: RuleTable, extra: RuleTable) -> RuleTable:
    """Append ``extra`` rules after ``base`` rules; same rule_id replaces."""
    merged: RuleTable = {}
    for category in DETECTABLE_CATEGORIES:
        rules = list(base.get(category, ()))
        for rule in extra.get(category, ()):
            rules = [r for r in rules if r.rule_id != rule.rule_id]
            rules.append(rule)
        if rules:
            merged[category] = tuple(rules)
    return merged


def compile_rule_payload(payload: dict[str, Any]) -> RuleTable:
    """Build a rule table from a ``{category: [rule, ...]}`` mapping."""
    table: dict[SectionCategory, list[PatternRule]] = {}
    for category, raw_rules in payload.items():
        if not isinstance(category, str) or category.startswith("_"):
            continue
        if category not in DETECTABLE_CATEGORIES:
            raise ValueError(f"Rule file: unknown category {category!r}")
        if not isinstance(raw_rules, list):
            raise ValueError(f"Rule file: rules for {category!r} must be a list")
        for i, raw in enumerate(raw_rules):
            if isinstance(raw, str):
                raw = {"pattern": raw}
            if not isinstance(raw, dict) or not isinstance(raw.get("pattern"), str):
                raise ValueError(f"Rule file: {category}[{i}] needs a string 'pattern'")
            rule_id = str(raw.get("id") or f"{category}.custom_{i}")
            extent = raw.get("extent", "sentence")
            try:
                compiled = re.compile(raw["pattern"], re.MULTILINE)
            except re.error as exc:
                raise ValueError(f"Rule file: {rule_id} does not compile: {exc}") from exc
            table.setdefault(category, []).append(  # type: ignore[arg-type]
                PatternRule(rule_id, category, compiled, extent)  # type: ignore[arg-type]
            )
    return {cat: tuple(rules) for cat, rules in table.items()}


def load_rule_table(path: Path, *, replace_defaults: bool = False) -> RuleTable:
    """Load a JSON rule file and merge it onto the default rules."""
    payload = load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Rule file must be a JSON object: {path}")
    extra = compile_rule_payload(payload)
    if replace_defaults:
        return extra
    return merge_rule_tables(DEFAULT_RULES, extra)
