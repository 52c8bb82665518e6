"""Component tree: the structural form of a generated prompt document.

A leaf holds text; an internal node holds ordered children. Attribute
values are stored unescaped; escaping happens only in the formatter.
"""
from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9._-]*$")


def is_valid_name(name: object) -> bool:
    """Tag/attribute name rule: ``[A-Za-z_][A-Za-z0-9._-]*``."""
    return isinstance(name, str) and NAME_RE.match(name) is not None


@dataclass(slots=True)
class Component:
    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    content: str | list[Component] = ""

    @property
    def is_leaf(self) -> bool:
        return isinstance(self.content, str)

    @property
    def children(self) -> list[Component]:
        return self.content if isinstance(self.content, list) else []

    def walk(self) -> Iterator[tuple[Component, int]]:
        """Depth-first (component, depth) pairs, root at depth 0."""
        stack: list[tuple[Component, int]] = [(self, 0)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            for child in reversed(node.children):
                stack.append((child, depth + 1))

    def find(self, tag: str) -> list[Component]:
        return [node for node, _ in self.walk() if node.tag == tag]

    def text(self) -> str:
        """Leaf text, or the children's text joined by newlines."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(child.text() for child in self.content)


def leaf(tag: str, text: str, attributes: dict[str, str] | None = None) -> Component:
    return Component(tag=tag, attributes=dict(attributes or {}), content=text)


def node(tag: str, children: list[Component], attributes: dict[str, str] | None = None) -> Component:
    return Component(tag=tag, attributes=dict(attributes or {}), content=list(children))


def component_to_dict(component: Component) -> dict[str, Any]:
    out: dict[str, Any] = {"tag": component.tag}
    if component.attributes:
        out["attributes"] = dict(component.attributes)
    if isinstance(component.content, list):
        out["content"] = [component_to_dict(c) for c in component.content]
    else:
        out["content"] = component.content
    return out
