"""Reusable text primitives for keyword, sentence and similarity checks.

Pure text operations with zero pipeline dependencies.
"""
from __future__ import annotations

import re
from bisect import bisect_left, bisect_right
from dataclasses import dataclass

# Sentence terminator run followed by whitespace (segmentation boundary).
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+\s+")
# Paragraph boundary: a line break, optional blank-ish whitespace, line break.
PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t\r\f\v]*\n\s*")

_TERMINATORS = ".!?"
_STOP_RE = re.compile(r"[.!?]+|\n")
_WORD_RE = re.compile(r"[a-z0-9']+")


@dataclass(frozen=True, slots=True)
class PhraseHit:
    """A keyword found at a specific offset."""

    phrase: str
    char_offset: int


def keyword_hits(text_lower: str, keywords: tuple[str, ...] | list[str]) -> list[PhraseHit]:
    """First occurrence of each keyword in pre-lowercased text."""
    hits: list[PhraseHit] = []
    for kw in keywords:
        pos = text_lower.find(kw.lower())
        if pos >= 0:
            hits.append(PhraseHit(kw, pos))
    return hits


def count_keywords_present(text_lower: str, keywords: tuple[str, ...] | list[str]) -> int:
    return len(keyword_hits(text_lower, keywords))


def contains_any(text_lower: str, keywords: tuple[str, ...] | list[str]) -> bool:
    return any(kw.lower() in text_lower for kw in keywords)


def count_token(text_lower: str, token: str) -> int:
    """Count word-bounded, case-insensitive occurrences of ``token``."""
    if not token:
        return 0
    return len(re.findall(rf"(?<![a-z0-9_]){re.escape(token.lower())}(?![a-z0-9_])", text_lower))


# ---------------------------------------------------------------------------
# Spans
# ---------------------------------------------------------------------------

def _strip_span(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def paragraph_spans(text: str) -> list[tuple[int, int]]:
    """Whitespace-trimmed spans of blank-line-delimited paragraphs."""
    spans: list[tuple[int, int]] = []
    cursor = 0
    for m in PARAGRAPH_SPLIT_RE.finditer(text):
        s, e = _strip_span(text, cursor, m.start())
        if e > s:
            spans.append((s, e))
        cursor = m.end()
    s, e = _strip_span(text, cursor, len(text))
    if e > s:
        spans.append((s, e))
    return spans


def sentence_spans(text: str, start: int = 0, end: int | None = None) -> list[tuple[int, int]]:
    """Spans of sentences within ``text[start:end]``, terminators kept."""
    if end is None:
        end = len(text)
    spans: list[tuple[int, int]] = []
    cursor = start
    for m in SENTENCE_SPLIT_RE.finditer(text, start, end):
        # Keep the terminator run, drop the trailing whitespace.
        term_end = m.start() + len(m.group(0).rstrip())
        s, e = _strip_span(text, cursor, term_end)
        if e > s:
            spans.append((s, e))
        cursor = m.end()
    s, e = _strip_span(text, cursor, end)
    if e > s:
        spans.append((s, e))
    return spans


class SentenceEdges:
    """Sentence and line edges of one text, computed once.

    A sentence starts after a line break or after a terminator followed by
    whitespace. It runs through the next terminator run (inclusive) or up to
    the next line break. Lookups are ``bisect`` searches over the sorted
    edge lists.
    """

    __slots__ = ("text", "_starts", "_stops", "_stop_ends")

    def __init__(self, text: str) -> None:
        self.text = text
        n = len(text)
        starts = [0]
        stops: list[int] = []
        stop_ends: list[int] = []
        for m in _STOP_RE.finditer(text):
            if m.group(0) == "\n":
                stops.append(m.start())
                stop_ends.append(m.start())
                starts.append(m.end())
                continue
            for pos in range(m.start(), m.end()):
                stops.append(pos)
                stop_ends.append(m.end())
                if pos + 1 < n and text[pos + 1].isspace():
                    starts.append(pos + 1)
        self._starts = sorted(set(starts))
        self._stops = stops
        self._stop_ends = stop_ends

    def enclosing(self, start: int, end: int) -> tuple[int, int]:
        """Expand ``[start, end)`` to the sentence (or line) that contains it."""
        left = self._starts[bisect_right(self._starts, start) - 1]
        i = bisect_left(self._stops, max(end, start))
        right = self._stop_ends[i] if i < len(self._stops) else len(self.text)
        return _strip_span(self.text, left, right)


def previous_boundary(text: str, index: int) -> int:
    """Start of the sentence containing ``index`` (after a terminator or newline)."""
    pos = index
    while pos > 0:
        ch = text[pos - 1]
        if ch == "\n" or ch in _TERMINATORS:
            break
        pos -= 1
    while pos < index and text[pos].isspace():
        pos += 1
    return pos


def next_boundary(text: str, index: int) -> int:
    """End of the sentence containing ``index - 1`` (terminator inclusive)."""
    if index > 0 and text[index - 1] in _TERMINATORS:
        return index
    n = len(text)
    pos = index
    while pos < n:
        ch = text[pos]
        if ch == "\n":
            break
        if ch in _TERMINATORS:
            pos += 1
            while pos < n and text[pos] in _TERMINATORS:
                pos += 1
            break
        pos += 1
    while pos > index and text[pos - 1].isspace():
        pos -= 1
    return pos


def merge_spans(spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Sorted union of possibly-overlapping spans; touching spans join."""
    merged: list[tuple[int, int]] = []
    for s, e in sorted(spans):
        if e <= s:
            continue
        if merged and s <= merged[-1][1]:
            if e > merged[-1][1]:
                merged[-1] = (merged[-1][0], e)
        else:
            merged.append((s, e))
    return merged


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

def word_tokens(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def token_overlap_ratio(a: str, b: str) -> float:
    """Shared tokens over the larger token-set size (0 when either is empty)."""
    ta = word_tokens(a)
    tb = word_tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / max(len(ta), len(tb))


def lower_preserving(text: str) -> str:
    """Lower-case ``text`` without changing its length (offsets stay valid)."""
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    return "".join(ch.lower() if len(ch.lower()) == 1 else ch for ch in text)

