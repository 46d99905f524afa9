"""Lightweight MJML tag scanner and node tree.

The scanner walks the raw text once and yields tag tokens with their exact
source span, so callers can rewrite single tags in place and leave every
other byte alone. Comments, CDATA and the raw HTML body of ending tags
(mj-text, mj-button, ...) are skipped, which keeps markup that only
*mentions* a tag from being treated as structure.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

# MJML components whose content is raw HTML rather than child components
ENDING_TAGS = frozenset(
    {
        "mj-text",
        "mj-button",
        "mj-raw",
        "mj-table",
        "mj-style",
        "mj-title",
        "mj-preview",
        "mj-navbar-link",
        "mj-social-element",
        "mj-accordion-title",
        "mj-accordion-text",
    }
)
VOID_TAGS = frozenset({"br", "hr", "img", "meta", "link", "input"})

_TAG_RE = re.compile(
    r"<(/?)([a-zA-Z][\w:.-]*)"
    r"((?:\s+[^\s=/>\"']+(?:\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s\"'>]+))?)*)"
    r"\s*(/?)>",
    re.DOTALL,
)
_ATTR_RE = re.compile(r"([^\s=/>\"']+)(?:\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'>]+)))?")


@dataclass
class Tag:
    name: str
    attrs: List[Tuple[str, Optional[str]]]
    start: int
    end: int
    closing: bool = False
    self_closing: bool = False
    line: int = 1

    def get(self, key: str) -> Optional[str]:
        key = key.lower()
        for k, v in self.attrs:
            if k.lower() == key:
                return v
        return None

    def has(self, key: str) -> bool:
        key = key.lower()
        return any(k.lower() == key for k, _ in self.attrs)


@dataclass
class Node:
    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)
    content: str = ""
    line: int = 1
    parent: Optional["Node"] = field(default=None, repr=False)

    def find_all(self, name: str) -> Iterator["Node"]:
        for child in self.children:
            if child.tag == name:
                yield child
            yield from child.find_all(name)

    def first(self, name: str) -> Optional["Node"]:
        return next(self.find_all(name), None)

    def ancestors(self) -> Iterator["Node"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent


@dataclass
class ParsedDocument:
    root: Node
    problems: List[Tuple[int, str]] = field(default_factory=list)


def _parse_attrs(raw: str) -> List[Tuple[str, Optional[str]]]:
    attrs: List[Tuple[str, Optional[str]]] = []
    for m in _ATTR_RE.finditer(raw or ""):
        name = m.group(1)
        if m.group(2) is not None:
            value: Optional[str] = m.group(2)
        elif m.group(3) is not None:
            value = m.group(3)
        else:
            value = m.group(4)
        attrs.append((name, value))
    return attrs


def _line_at(text: str, pos: int) -> int:
    return text.count("\n", 0, pos) + 1


def iter_tags(text: str) -> Iterator[Tag]:
    """Yield every structural tag in source order.

    For ending tags the raw body is skipped and the matching closing tag is
    yielded right after the opening one.
    """
    pos = 0
    n = len(text or "")
    while pos < n:
        lt = text.find("<", pos)
        if lt == -1:
            return
        if text.startswith("<!--", lt):
            close = text.find("-->", lt + 4)
            pos = n if close == -1 else close + 3
            continue
        if text.startswith("<![CDATA[", lt):
            close = text.find("]]>", lt + 9)
            pos = n if close == -1 else close + 3
            continue
        m = _TAG_RE.match(text, lt)
        if not m:
            pos = lt + 1
            continue
        name = m.group(2).lower()
        tag = Tag(
            name=name,
            attrs=_parse_attrs(m.group(3)),
            start=m.start(),
            end=m.end(),
            closing=bool(m.group(1)),
            self_closing=bool(m.group(4)),
            line=_line_at(text, m.start()),
        )
        yield tag
        pos = m.end()
        if tag.closing or tag.self_closing or name not in ENDING_TAGS:
            continue
        end_re = re.compile(r"</\s*" + re.escape(name) + r"\s*>", re.IGNORECASE)
        end_m = end_re.search(text, pos)
        if end_m is None:
            return
        yield Tag(
            name=name,
            attrs=[],
            start=end_m.start(),
            end=end_m.end(),
            closing=True,
            line=_line_at(text, end_m.start()),
        )
        pos = end_m.end()


def render_tag(tag: Tag) -> str:
    """Serialize a (possibly edited) opening tag."""
    parts = [tag.name]
    for k, v in tag.attrs:
        if v is None:
            parts.append(k)
        elif '"' in v:
            parts.append(f"{k}='{v}'")
        else:
            parts.append(f'{k}="{v}"')
    return "<" + " ".join(parts) + (" />" if tag.self_closing else ">")


def apply_edits(text: str, edits: List[Tuple[int, int, str]]) -> str:
    """Splice (start, end, replacement) edits into text; edits must not overlap."""
    out = text
    for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
        out = out[:start] + replacement + out[end:]
    return out


def parse(text: str) -> ParsedDocument:
    """Build a node tree from the tag stream. Mismatched tags are recorded, not raised."""
    root = Node(tag="#document", line=1)
    doc = ParsedDocument(root=root)
    stack: List[Tuple[Node, Tag]] = []

    def current() -> Node:
        return stack[-1][0] if stack else root

    for tag in iter_tags(text or ""):
        if tag.closing:
            idx = None
            for i in range(len(stack) - 1, -1, -1):
                if stack[i][0].tag == tag.name:
                    idx = i
                    break
            if idx is None:
                doc.problems.append((tag.line, f"Unexpected closing tag </{tag.name}>"))
                continue
            for node, _ in stack[idx + 1 :]:
                doc.problems.append((node.line, f"Unclosed tag <{node.tag}>"))
            node, open_tag = stack[idx]
            if node.tag in ENDING_TAGS:
                node.content = text[open_tag.end : tag.start]
            del stack[idx:]
            continue
        node = Node(
            tag=tag.name,
            attrs={k.lower(): (v if v is not None else "") for k, v in tag.attrs},
            line=tag.line,
            parent=current(),
        )
        current().children.append(node)
        if not tag.self_closing and tag.name not in VOID_TAGS:
            stack.append((node, tag))
    for node, _ in stack:
        doc.problems.append((node.line, f"Unclosed tag <{node.tag}>"))
    return doc
