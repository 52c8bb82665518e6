"""Serialization of component trees into tag markup.

Indented output renders short single-line text inline. Any other text goes
between the tags in block layout: a line break, every content line
re-indented one level deeper (empty lines stay empty), a line break and the
closing pad. Inline text never starts with a line break, so
``parse_markup`` can tell the two layouts apart and strip exactly the added
indent. Minified output is a single line. Attribute values and text
are escaped for ``& < > " '``; nothing is escaped inside the tree itself.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass

from promptmark.component import Component, is_valid_name

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
INLINE_MAX_CHARS = 80

_ESCAPES: tuple[tuple[str, str], ...] = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_markup(text: str) -> str:
    for raw, entity in _ESCAPES:
        text = text.replace(raw, entity)
    return text


def unescape_markup(text: str) -> str:
    for raw, entity in reversed(_ESCAPES):
        text = text.replace(entity, raw)
    return text


@dataclass(frozen=True, slots=True)
class FormattingOptions:
    indent: str = "  "
    include_xml_declaration: bool = False
    sort_attributes: bool = False
    preserve_whitespace: bool = True


@dataclass(frozen=True, slots=True)
class FormattingStats:
    total_components: int
    max_depth: int
    total_attributes: int
    total_text_length: int


def _as_list(tree: Component | Sequence[Component]) -> list[Component]:
    return [tree] if isinstance(tree, Component) else list(tree)


def _is_inline(content: str) -> bool:
    return len(content) < INLINE_MAX_CHARS and "\n" not in content and content.strip() == content


class MarkupFormatter:
    def __init__(self, options: FormattingOptions | None = None) -> None:
        self.options = options or FormattingOptions()

    def format(
        self,
        tree: Component | Sequence[Component],
        options: FormattingOptions | None = None,
    ) -> str:
        """Indented markup for one component or a sequence of siblings."""
        opts = options or self.options
        lines: list[str] = []
        if opts.include_xml_declaration:
            lines.append(XML_DECLARATION)
        for component in _as_list(tree):
            self._format_component(component, lines, 0, opts)
        return "\n".join(lines)

    def format_minified(self, tree: Component | Sequence[Component]) -> str:
        return "".join(self._format_minified(c) for c in _as_list(tree))

    def _opening_tag(self, component: Component, opts: FormattingOptions) -> str:
        if not component.attributes:
            return component.tag
        items = list(component.attributes.items())
        if opts.sort_attributes:
            items.sort(key=lambda kv: kv[0])
        rendered = " ".join(f'{key}="{escape_markup(value)}"' for key, value in items)
        return f"{component.tag} {rendered}"

    def _format_component(
        self,
        component: Component,
        lines: list[str],
        depth: int,
        opts: FormattingOptions,
    ) -> None:
        pad = opts.indent * depth
        inner = opts.indent * (depth + 1)
        opening = self._opening_tag(component, opts)
        tag = component.tag
        content = component.content

        if isinstance(content, list):
            lines.append(f"{pad}<{opening}>")
            for child in content:
                self._format_component(child, lines, depth + 1, opts)
            lines.append(f"{pad}</{tag}>")
            return

        if not opts.preserve_whitespace:
            content = " ".join(content.split())
        if _is_inline(content):
            lines.append(f"{pad}<{opening}>{escape_markup(content)}</{tag}>")
            return

        lines.append(f"{pad}<{opening}>")
        for line in escape_markup(content).split("\n"):
            lines.append(f"{inner}{line}" if line else "")
        lines.append(f"{pad}</{tag}>")

    def _format_minified(self, component: Component) -> str:
        opening = self._opening_tag(component, self.options)
        if isinstance(component.content, list):
            inner = "".join(self._format_minified(c) for c in component.content)
        else:
            inner = escape_markup(component.content)
        return f"<{opening}>{inner}</{component.tag}>"

    # ------------------------------------------------------------------
    # Validation / diagnostics
    # ------------------------------------------------------------------

    def validate(self, component: object) -> list[str]:
        """Flat list of structural errors; traversal never stops early."""
        errors: list[str] = []
        if not isinstance(component, Component):
            return [f"Expected Component, got {type(component).__name__}"]
        if not is_valid_name(component.tag):
            errors.append(f"Invalid tag name: '{component.tag}'")
        if not isinstance(component.attributes, dict):
            errors.append(
                f"Attributes must be a mapping, got {type(component.attributes).__name__}"
            )
        else:
            for key, value in component.attributes.items():
                if not is_valid_name(key):
                    errors.append(f"Invalid attribute name: '{key}'")
                if not isinstance(value, str):
                    errors.append(f"Attribute '{key}' must be a string, got {type(value).__name__}")
        content = component.content
        if isinstance(content, list):
            for i, child in enumerate(content):
                errors.extend(f"Child {i}: {e}" for e in self.validate(child))
        elif not isinstance(content, str):
            errors.append(
                f"Content must be string or list of components, got {type(content).__name__}"
            )
        return errors

    def debug_print(self, component: Component, depth: int = 0) -> str:
        pad = "  " * depth
        attrs = ""
        if component.attributes:
            joined = ", ".join(f'{k}="{v}"' for k, v in component.attributes.items())
            attrs = f" [{joined}]"
        out = f"{pad}{component.tag}{attrs}\n"
        if isinstance(component.content, list):
            for child in component.content:
                out += self.debug_print(child, depth + 1)
        else:
            text = component.content
            preview = text[:50] + "..." if len(text) > 50 else text
            out += f'{pad}  "{preview}"\n'
        return out

    def formatting_stats(self, tree: Component | Sequence[Component]) -> FormattingStats:
        total = max_depth = attrs = text_len = 0
        for root in _as_list(tree):
            for component, depth in root.walk():
                total += 1
                max_depth = max(max_depth, depth + 1)
                attrs += len(component.attributes)
                if isinstance(component.content, str):
                    text_len += len(component.content)
        return FormattingStats(total, max_depth, attrs, text_len)


# ---------------------------------------------------------------------------
# Parsing back
# ---------------------------------------------------------------------------

def _leaf_text(raw: str, depth: int, indent: str | None) -> str:
    if indent is None or not raw.startswith("\n"):
        return raw
    inner = indent * (depth + 1)
    closing = "\n" + indent * depth
    if len(raw) < 1 + len(closing) or not raw.endswith(closing):
        return raw
    lines = raw[1:len(raw) - len(closing)].split("\n")
    if any(line and not line.startswith(inner) for line in lines):
        return raw
    return "\n".join(line[len(inner):] for line in lines)


def _from_element(element: ET.Element, depth: int, indent: str | None) -> Component:
    children = list(element)
    attributes = dict(element.attrib)
    if children:
        return Component(
            element.tag, attributes, [_from_element(c, depth + 1, indent) for c in children],
        )
    return Component(element.tag, attributes, _leaf_text(element.text or "", depth, indent))


def parse_markup(markup: str, indent: str | None = "  ") -> Component:
    """Parse markup produced by ``MarkupFormatter`` back into a component tree.

    ``indent`` must match the indent the markup was formatted with. Pass
    ``None`` for minified markup, whose leaf text is taken verbatim.
    Raises ``xml.etree.ElementTree.ParseError`` on malformed input.
    """
    return _from_element(ET.fromstring(markup.strip()), 0, indent)
