"""Rule-based per-category pattern matching.

For each category, every registered rule is run against the lower-cased
block text and only the best-scoring rule is kept. Categories are scored
independently; a block may match several, and disambiguation happens later
in ``promptmark.context``.

Raw score::

    coverage = covered chars / len(text)
    score    = min(coverage * 2, 0.8) + (0.2 if a defining keyword is in the match)

clamped to 1.0. Matches below the acceptance floor are dropped.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

from promptmark.rules import DEFAULT_RULES, DEFINING_KEYWORDS, PatternRule, RuleTable
from promptmark.textmatch import (
    SentenceEdges,
    contains_any,
    lower_preserving,
    merge_spans,
)
from promptmark.types import (
    CATEGORY_ORDER,
    DETECTABLE_CATEGORIES,
    PatternMatch,
    SectionCategory,
    category_ordinal,
)

log = logging.getLogger(__name__)

DEFAULT_ACCEPTANCE_FLOOR = 0.3
COVERAGE_WEIGHT = 2.0
COVERAGE_CAP = 0.8
KEYWORD_BONUS = 0.2


@dataclass(frozen=True, slots=True)
class RuleHit:
    """Extents covered by one rule in one text."""

    rule: PatternRule
    spans: tuple[tuple[int, int], ...]

    @property
    def start(self) -> int:
        return min(s for s, _ in self.spans)

    @property
    def end(self) -> int:
        return max(e for _, e in self.spans)


def _rule_extents(rule: PatternRule, edges: SentenceEdges) -> list[tuple[int, int]]:
    text_lower = edges.text
    block_end = len(text_lower.rstrip())
    spans: list[tuple[int, int]] = []
    for m in rule.pattern.finditer(text_lower):
        if m.end() == m.start():
            continue
        if rule.extent == "match":
            spans.append((m.start(), m.end()))
        elif rule.extent == "sentence":
            s, e = edges.enclosing(m.start(), m.end())
            spans.append((s, max(e, m.end())))
        else:
            spans.append((m.start(), block_end))
    return [(s, e) for s, e in spans if e > s]


def raw_score(
    covered: int,
    total: int,
    matched_lower: str,
    category: SectionCategory,
) -> float:
    """Coverage-plus-keyword score shared by table rules and ad-hoc patterns."""
    if total <= 0:
        return 0.0
    score = min(covered / total * COVERAGE_WEIGHT, COVERAGE_CAP)
    if contains_any(matched_lower, DEFINING_KEYWORDS.get(category, ())):
        score += KEYWORD_BONUS
    return min(score, 1.0)


def score_rule_hit(hit: RuleHit, text_lower: str, category: SectionCategory) -> float:
    """Raw 0-1 score of a rule hit against the whole text."""
    merged = merge_spans(list(hit.spans))
    fragments = " ".join(text_lower[s:e] for s, e in merged)
    covered = sum(e - s for s, e in merged)
    return raw_score(covered, len(text_lower), fragments, category)


class PatternMatcher:
    """Scans text with a rule table and reports the best rule per category."""

    def __init__(
        self,
        rules: RuleTable | None = None,
        *,
        acceptance_floor: float = DEFAULT_ACCEPTANCE_FLOOR,
    ) -> None:
        self.rules: RuleTable = dict(rules if rules is not None else DEFAULT_RULES)
        self.acceptance_floor = acceptance_floor
        self._category_counts: Counter[str] = Counter()
        self._rule_counts: Counter[str] = Counter()

    def best_for_category(self, text: str, category: SectionCategory) -> PatternMatch | None:
        """Best rule match for one category, or None when nothing qualifies."""
        text_lower = lower_preserving(text)
        edges = SentenceEdges(text_lower)
        best: PatternMatch | None = None
        for rule in self.rules.get(category, ()):
            spans = _rule_extents(rule, edges)
            if not spans:
                continue
            hit = RuleHit(rule, tuple(spans))
            score = score_rule_hit(hit, text_lower, category)
            if best is None or score > best.confidence:
                best = PatternMatch(
                    category=category,
                    confidence=round(score, 6),
                    matched_text=text[hit.start:hit.end],
                    rule_ids=(rule.rule_id,),
                    start_index=hit.start,
                    end_index=hit.end,
                )
        if best is None or best.confidence < self.acceptance_floor:
            return None
        return best

    def match(self, text: str) -> list[PatternMatch]:
        """One match per qualifying category, highest confidence first."""
        if not text.strip():
            return []
        matches: list[PatternMatch] = []
        for category in DETECTABLE_CATEGORIES:
            found = self.best_for_category(text, category)
            if found is None:
                continue
            matches.append(found)
            self._category_counts[category] += 1
            for rule_id in found.rule_ids:
                self._rule_counts[rule_id] += 1
        matches.sort(key=lambda m: (-m.confidence, category_ordinal(m.category)))
        log.debug(
            "matched %d categories in %d chars: %s",
            len(matches), len(text), [m.category for m in matches],
        )
        return matches

    def get_pattern_stats(self) -> dict[str, int]:
        """Cumulative per-category match counts (every category listed)."""
        return {cat: self._category_counts.get(cat, 0) for cat in CATEGORY_ORDER}

    def get_rule_stats(self) -> dict[str, int]:
        """Cumulative per-rule win counts, most frequent first."""
        return dict(self._rule_counts.most_common())

    def reset_stats(self) -> None:
        self._category_counts.clear()
        self._rule_counts.clear()
