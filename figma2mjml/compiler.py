"""MJML -> HTML compiler.

Covers the component set the generators emit (sections, columns, groups,
wrappers and the usual content blocks) and renders each one through a
jinja2 partial under templates/html/. Attribute values are layered the
way MJML does it: component defaults, then mj-all, then per-tag
mj-attributes, then mj-class, then the inline attributes.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup
from pydantic import BaseModel, Field, field_validator

from figma2mjml.markup import Node, iter_tags, parse
from figma2mjml.models import CompilationResult, Issue

log = logging.getLogger(__name__)

VALIDATION_LEVELS = ("soft", "strict", "skip")
DEFAULT_BREAKPOINT = "480px"
DEFAULT_BODY_WIDTH = 600
PREVIEW_TEXT_LIMIT = 150

DEFAULT_FONTS: Dict[str, str] = {
    "Open Sans": "https://fonts.googleapis.com/css?family=Open+Sans:300,400,500,700",
    "Ubuntu": "https://fonts.googleapis.com/css?family=Ubuntu:300,400,500,700",
    "Poppins": "https://fonts.googleapis.com/css2?family=Poppins:wght@300;400;500;600;700&display=swap",
}

_PADDING = ["padding", "padding-bottom", "padding-left", "padding-right", "padding-top"]
_BORDERS = ["border", "border-bottom", "border-left", "border-radius", "border-right", "border-top"]
_SECTION_ATTRIBUTES = [
    "background-color", "background-position", "background-position-x", "background-position-y",
    "background-repeat", "background-size", "background-url", "css-class", "direction",
    "full-width", "text-align",
] + _BORDERS + _PADDING

ALLOWED_ATTRIBUTES: Dict[str, List[str]] = {
    "mj-body": ["background-color", "width", "css-class"],
    "mj-wrapper": _SECTION_ATTRIBUTES,
    "mj-section": _SECTION_ATTRIBUTES,
    "mj-group": ["background-color", "direction", "vertical-align", "width", "css-class"],
    "mj-column": [
        "background-color", "css-class", "inner-background-color", "vertical-align", "width",
    ] + _BORDERS + _PADDING,
    "mj-text": [
        "align", "color", "container-background-color", "css-class", "font-family", "font-size",
        "font-style", "font-weight", "height", "letter-spacing", "line-height", "text-decoration",
        "text-transform", "vertical-align",
    ] + _PADDING,
    "mj-button": [
        "align", "background-color", "color", "container-background-color", "css-class",
        "font-family", "font-size", "font-style", "font-weight", "height", "href", "inner-padding",
        "letter-spacing", "line-height", "rel", "target", "text-align", "text-decoration",
        "text-transform", "title", "vertical-align", "width",
    ] + _BORDERS + _PADDING,
    "mj-image": [
        "align", "alt", "container-background-color", "css-class", "fluid-on-mobile", "height",
        "href", "name", "rel", "sizes", "src", "srcset", "target", "title", "usemap", "width",
    ] + _BORDERS + _PADDING,
    "mj-spacer": ["container-background-color", "css-class", "height"] + _PADDING,
    "mj-divider": [
        "align", "border-color", "border-style", "border-width", "container-background-color",
        "css-class", "width",
    ] + _PADDING,
    "mj-raw": ["position"],
}
_ALWAYS_ALLOWED = {"mj-class"}

DEFAULT_ATTRIBUTES: Dict[str, Dict[str, str]] = {
    "mj-body": {"width": "600px"},
    "mj-wrapper": {"direction": "ltr", "padding": "20px 0", "text-align": "center"},
    "mj-section": {"direction": "ltr", "padding": "20px 0", "text-align": "center"},
    "mj-group": {"direction": "ltr"},
    "mj-column": {"direction": "ltr", "vertical-align": "top"},
    "mj-text": {
        "align": "left",
        "color": "#000000",
        "font-family": "Ubuntu, Helvetica, Arial, sans-serif",
        "font-size": "13px",
        "line-height": "1",
        "padding": "10px 25px",
    },
    "mj-button": {
        "align": "center",
        "background-color": "#414141",
        "border": "none",
        "border-radius": "3px",
        "color": "#ffffff",
        "font-family": "Ubuntu, Helvetica, Arial, sans-serif",
        "font-size": "13px",
        "font-weight": "normal",
        "inner-padding": "10px 25px",
        "line-height": "120%",
        "padding": "10px 25px",
        "target": "_blank",
        "text-decoration": "none",
        "text-transform": "none",
        "vertical-align": "middle",
    },
    "mj-image": {"align": "center", "border": "0", "height": "auto", "padding": "10px 25px"},
    "mj-spacer": {"height": "20px"},
    "mj-divider": {
        "align": "center",
        "border-color": "#000000",
        "border-style": "solid",
        "border-width": "4px",
        "padding": "10px 25px",
        "width": "100%",
    },
}

CONTENT_TAGS = ("mj-text", "mj-button", "mj-image", "mj-spacer", "mj-divider")
ALLOWED_PARENTS: Dict[str, Tuple[str, ...]] = {
    "mj-body": ("mjml",),
    "mj-wrapper": ("mj-body",),
    "mj-section": ("mj-body", "mj-wrapper"),
    "mj-group": ("mj-section",),
    "mj-column": ("mj-section", "mj-group"),
}
for _tag in CONTENT_TAGS:
    ALLOWED_PARENTS[_tag] = ("mj-column",)
HEAD_TAGS = ("mj-title", "mj-preview", "mj-attributes", "mj-style", "mj-font", "mj-breakpoint")

_NUM_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(px|%)?\s*$")
_HTML_TAG_RE = re.compile(r"<[^>]*>")


class CompilationError(Exception):
    def __init__(self, message: str, errors: Optional[List[Issue]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or [Issue(kind="compilation", message=message, line=0)]


class CompileOptions(BaseModel):
    validation_level: str = "soft"
    fonts: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_FONTS))

    @field_validator("validation_level", mode="before")
    @classmethod
    def _check_level(cls, v: Any) -> str:
        level = str(v or "soft").strip().lower()
        if level not in VALIDATION_LEVELS:
            raise ValueError(f"validation level must be one of {', '.join(VALIDATION_LEVELS)}")
        return level


def _build_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates", "html")),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


_env = _build_env()


def _px(value: Optional[str], default: float = 0.0) -> float:
    m = _NUM_RE.match(value) if isinstance(value, str) else None
    if not m or m.group(2) == "%":
        return default
    return float(m.group(1))


def _padding_sides(attrs: Dict[str, str], key: str = "padding") -> Tuple[str, str, str, str]:
    parts = (attrs.get(key) or "0").split()
    if len(parts) == 1:
        top = right = bottom = left = parts[0]
    elif len(parts) == 2:
        top = bottom = parts[0]
        right = left = parts[1]
    elif len(parts) == 3:
        top, right, bottom = parts
        left = right
    else:
        top, right, bottom, left = parts[:4]
    sides = {"top": top, "right": right, "bottom": bottom, "left": left}
    for side in sides:
        override = attrs.get(f"{key}-{side}")
        if override:
            sides[side] = override
    return sides["top"], sides["right"], sides["bottom"], sides["left"]


def _style(pairs: Iterable[Tuple[str, Optional[str]]]) -> str:
    return "".join(f"{k}:{v};" for k, v in pairs if v not in (None, ""))


def _plain_text(html: str) -> str:
    return " ".join(_HTML_TAG_RE.sub(" ", html or "").split())


def _fmt(n: float) -> str:
    return f"{round(n, 4):g}"


class _Head:
    def __init__(self) -> None:
        self.title = ""
        self.preview = ""
        self.all_defaults: Dict[str, str] = {}
        self.tag_defaults: Dict[str, Dict[str, str]] = {}
        self.classes: Dict[str, Dict[str, str]] = {}
        self.css: List[str] = []
        self.fonts: Dict[str, str] = {}
        self.breakpoint = DEFAULT_BREAKPOINT


class MJMLCompiler:
    def __init__(self, options: Optional[CompileOptions] = None, env: Optional[Environment] = None) -> None:
        self.options = options or CompileOptions()
        self._env = env or _env
        self.head = _Head()
        self.issues: List[Issue] = []
        self.column_classes: Dict[str, str] = {}

    # validation -----------------------------------------------------------

    def _issue(self, node: Node, message: str) -> None:
        self.issues.append(Issue(kind="mjml-validation", message=f"Line {node.line}: {message}", line=node.line))

    def _check(self, node: Node) -> None:
        parent = node.parent.tag if node.parent is not None else None
        if node.tag in ALLOWED_ATTRIBUTES:
            allowed = ALLOWED_ATTRIBUTES[node.tag]
            for attr in node.attrs:
                if attr not in allowed and attr not in _ALWAYS_ALLOWED:
                    self._issue(node, f"Attribute {attr} is illegal on <{node.tag}>")
            parents = ALLOWED_PARENTS.get(node.tag)
            if parents and parent not in parents:
                self._issue(
                    node, f"<{node.tag}> cannot be used inside <{parent}>, only inside: {', '.join(parents)}"
                )
        else:
            self._issue(node, f"Element <{node.tag}> doesn't exist or is not registered")
        for child in node.children:
            self._check(child)

    # head -----------------------------------------------------------------

    def _read_head(self, head_node: Node) -> None:
        for child in head_node.children:
            if child.tag == "mj-title":
                self.head.title = _plain_text(child.content)
            elif child.tag == "mj-preview":
                self.head.preview = _plain_text(child.content)
            elif child.tag == "mj-attributes":
                for item in child.children:
                    attrs = dict(item.attrs)
                    if item.tag == "mj-all":
                        self.head.all_defaults.update(attrs)
                    elif item.tag == "mj-class":
                        name = attrs.pop("name", "")
                        if name:
                            self.head.classes.setdefault(name, {}).update(attrs)
                    else:
                        self.head.tag_defaults.setdefault(item.tag, {}).update(attrs)
            elif child.tag == "mj-style":
                css = child.content.strip()
                if css:
                    self.head.css.append(css)
            elif child.tag == "mj-font":
                name = child.attrs.get("name")
                href = child.attrs.get("href")
                if name and href:
                    self.head.fonts[name] = href
            elif child.tag == "mj-breakpoint":
                self.head.breakpoint = child.attrs.get("width") or DEFAULT_BREAKPOINT
            else:
                self._issue(child, f"Element <{child.tag}> is not allowed in <mj-head>")

    def _resolve(self, node: Node) -> Dict[str, str]:
        attrs = dict(DEFAULT_ATTRIBUTES.get(node.tag, {}))
        attrs.update(self.head.all_defaults)
        attrs.update(self.head.tag_defaults.get(node.tag, {}))
        for cls in (node.attrs.get("mj-class") or "").split():
            attrs.update(self.head.classes.get(cls, {}))
        attrs.update(node.attrs)
        attrs.pop("mj-class", None)
        return attrs

    def _font_links(self, document_text: str) -> List[str]:
        fonts = dict(self.options.fonts)
        fonts.update(self.head.fonts)
        return [href for name, href in fonts.items() if name in document_text]

    # rendering --------------------------------------------------------------

    def _render(self, node: Node, box: float) -> Markup:
        renderer = {
            "mj-wrapper": self._render_section,
            "mj-section": self._render_section,
            "mj-text": self._render_text,
            "mj-button": self._render_button,
            "mj-image": self._render_image,
            "mj-spacer": self._render_spacer,
            "mj-divider": self._render_divider,
            "mj-raw": self._render_raw,
        }.get(node.tag)
        if renderer is not None:
            return renderer(node, box)
        if node.tag in ("mj-column", "mj-group"):
            return self._render_columns([node], box)[0]
        log.debug("Skipping unsupported element <%s> at line %d", node.tag, node.line)
        return Markup("")

    def _template(self, name: str, **ctx: Any) -> Markup:
        return Markup(self._env.get_template(f"{name}.html").render(**ctx))

    def _render_section(self, node: Node, box: float) -> Markup:
        a = self._resolve(node)
        top, right, bottom, left = _padding_sides(a)
        inner = max(1.0, box - _px(left) - _px(right))
        bg = a.get("background-color")
        background = bg
        if a.get("background-url"):
            background = " ".join(
                p
                for p in (
                    bg,
                    f"url('{a['background-url']}')",
                    a.get("background-position", "top center"),
                    "/",
                    a.get("background-size", "auto"),
                    a.get("background-repeat", "repeat"),
                )
                if p
            )
        full_width = a.get("full-width") == "full-width"

        columns = [c for c in node.children if c.tag in ("mj-column", "mj-group")]
        rendered_columns = dict(zip((id(c) for c in columns), self._render_columns(columns, inner)))
        children = []
        for child in node.children:
            if id(child) in rendered_columns:
                children.append(rendered_columns[id(child)])
            else:
                children.append(self._render(child, inner))

        return self._template(
            "section",
            css_class=a.get("css-class"),
            outer_style=_style(
                [
                    ("background", background),
                    ("background-color", bg),
                    ("margin", "0px auto"),
                    ("max-width", None if full_width else f"{_fmt(box)}px"),
                    ("border-radius", a.get("border-radius")),
                    ("overflow", "hidden" if a.get("border-radius") else None),
                ]
            ),
            table_style=_style(
                [
                    ("background", background),
                    ("background-color", bg),
                    ("width", "100%"),
                    ("border-radius", a.get("border-radius")),
                ]
            ),
            td_style=_style(
                [
                    ("border", a.get("border")),
                    ("border-bottom", a.get("border-bottom")),
                    ("border-left", a.get("border-left")),
                    ("border-right", a.get("border-right")),
                    ("border-top", a.get("border-top")),
                    ("direction", a.get("direction")),
                    ("font-size", "0px"),
                    ("padding", f"{top} {right} {bottom} {left}"),
                    ("text-align", a.get("text-align")),
                ]
            ),
            children=children,
        )

    def _column_widths(self, nodes: List[Node], container: float) -> List[Tuple[str, str, float]]:
        """(css class, css width, width in px) for every column/group of one parent."""
        specs: List[Optional[Tuple[str, float]]] = []
        used_pct = 0.0
        for node in nodes:
            m = _NUM_RE.match(node.attrs.get("width") or "")
            if m and float(m.group(1)) > 0:
                unit = m.group(2) or "px"
                value = float(m.group(1))
                specs.append((unit, value))
                used_pct += value if unit == "%" else value / container * 100
            else:
                specs.append(None)
        auto_count = sum(1 for s in specs if s is None)
        auto_pct = max(0.0, 100.0 - used_pct) / auto_count if auto_count else 0.0

        out: List[Tuple[str, str, float]] = []
        for spec in specs:
            if spec is not None and spec[0] == "px":
                label = _fmt(spec[1])
                out.append((f"mj-column-px-{label.replace('.', '-')}", f"{label}px", spec[1]))
                continue
            pct = spec[1] if spec is not None else auto_pct
            label = _fmt(pct)
            out.append((f"mj-column-per-{label.replace('.', '-')}", f"{label}%", container * pct / 100))
        for cls, width, _ in out:
            self.column_classes.setdefault(cls, width)
        return out

    def _render_columns(self, nodes: List[Node], container: float) -> List[Markup]:
        rendered = []
        for node, (cls, _, px) in zip(nodes, self._column_widths(nodes, container)):
            if node.tag == "mj-group":
                rendered.append(self._render_group(node, cls, px))
            else:
                rendered.append(self._render_column(node, cls, px))
        return rendered

    def _render_group(self, node: Node, column_class: str, width: float) -> Markup:
        a = self._resolve(node)
        columns = [c for c in node.children if c.tag == "mj-column"]
        rendered = dict(zip((id(c) for c in columns), self._render_columns(columns, width)))
        children = [rendered.get(id(c)) or self._render(c, width) for c in node.children]
        return self._template(
            "group",
            column_class=column_class,
            css_class=a.get("css-class"),
            direction=a.get("direction", "ltr"),
            vertical_align=a.get("vertical-align", "top"),
            background_color=a.get("background-color"),
            children=children,
        )

    def _render_column(self, node: Node, column_class: str, width: float) -> Markup:
        a = self._resolve(node)
        top, right, bottom, left = _padding_sides(a)
        inner = max(1.0, width - _px(left) - _px(right))
        has_padding = any(_px(p) for p in (top, right, bottom, left))

        rows = []
        for child in node.children:
            ca = self._resolve(child)
            if child.tag in CONTENT_TAGS:
                ct, cr, cb, cl = _padding_sides(ca)
                child_box = max(1.0, inner - _px(cl) - _px(cr))
                td_style = _style(
                    [
                        ("background", ca.get("container-background-color")),
                        ("font-size", "0px"),
                        ("padding", f"{ct} {cr} {cb} {cl}"),
                        ("word-break", "break-word"),
                    ]
                )
            else:
                child_box = inner
                td_style = ""
            rows.append(
                {
                    "align": ca.get("align", "left"),
                    "css_class": ca.get("css-class"),
                    "td_style": td_style,
                    "html": self._render(child, child_box),
                }
            )

        return self._template(
            "column",
            column_class=column_class,
            css_class=a.get("css-class"),
            direction=a.get("direction", "ltr"),
            vertical_align=a.get("vertical-align", "top"),
            table_style=_style(
                [
                    ("background-color", a.get("background-color")),
                    ("border", a.get("border")),
                    ("border-radius", a.get("border-radius")),
                    ("padding", f"{top} {right} {bottom} {left}" if has_padding else None),
                    ("vertical-align", a.get("vertical-align")),
                ]
            ),
            rows=rows,
        )

    def _render_text(self, node: Node, box: float) -> Markup:
        a = self._resolve(node)
        return self._template(
            "text",
            style=_style(
                [
                    ("font-family", a.get("font-family")),
                    ("font-size", a.get("font-size")),
                    ("font-style", a.get("font-style")),
                    ("font-weight", a.get("font-weight")),
                    ("letter-spacing", a.get("letter-spacing")),
                    ("line-height", a.get("line-height")),
                    ("text-align", a.get("align")),
                    ("text-decoration", a.get("text-decoration")),
                    ("text-transform", a.get("text-transform")),
                    ("color", a.get("color")),
                    ("height", a.get("height")),
                ]
            ),
            content=Markup(node.content.strip()),
        )

    def _render_button(self, node: Node, box: float) -> Markup:
        a = self._resolve(node)
        bg = a.get("background-color")
        return self._template(
            "button",
            width=a.get("width"),
            background_color=bg,
            vertical_align=a.get("vertical-align"),
            href=a.get("href"),
            target=a.get("target"),
            rel=a.get("rel"),
            td_style=_style(
                [
                    ("border", a.get("border")),
                    ("border-radius", a.get("border-radius")),
                    ("cursor", "auto"),
                    ("font-style", a.get("font-style")),
                    ("height", a.get("height")),
                    ("mso-padding-alt", a.get("inner-padding")),
                    ("text-align", a.get("text-align")),
                    ("background", bg),
                ]
            ),
            link_style=_style(
                [
                    ("display", "inline-block"),
                    ("width", a.get("width")),
                    ("background", bg),
                    ("color", a.get("color")),
                    ("font-family", a.get("font-family")),
                    ("font-size", a.get("font-size")),
                    ("font-style", a.get("font-style")),
                    ("font-weight", a.get("font-weight")),
                    ("line-height", a.get("line-height")),
                    ("letter-spacing", a.get("letter-spacing")),
                    ("margin", "0"),
                    ("text-decoration", a.get("text-decoration")),
                    ("text-transform", a.get("text-transform")),
                    ("padding", a.get("inner-padding")),
                    ("mso-padding-alt", "0px"),
                    ("border-radius", a.get("border-radius")),
                ]
            ),
            content=Markup(node.content.strip()),
        )

    def _render_image(self, node: Node, box: float) -> Markup:
        a = self._resolve(node)
        width = max(1, int(min(_px(a.get("width"), box), box)))
        height = a.get("height") or "auto"
        return self._template(
            "image",
            width=width,
            height_attr="auto" if height == "auto" else _fmt(_px(height)),
            src=a.get("src", ""),
            alt=a.get("alt", ""),
            title=a.get("title"),
            href=a.get("href"),
            target=a.get("target", "_blank"),
            rel=a.get("rel"),
            img_style=_style(
                [
                    ("border", a.get("border")),
                    ("border-radius", a.get("border-radius")),
                    ("display", "block"),
                    ("outline", "none"),
                    ("text-decoration", "none"),
                    ("height", height),
                    ("width", "100%"),
                    ("font-size", "13px"),
                ]
            ),
        )

    def _render_spacer(self, node: Node, box: float) -> Markup:
        a = self._resolve(node)
        return self._template("spacer", height=a.get("height"))

    def _render_divider(self, node: Node, box: float) -> Markup:
        a = self._resolve(node)
        return self._template(
            "divider",
            border_style=a.get("border-style"),
            border_width=a.get("border-width"),
            border_color=a.get("border-color"),
            width=a.get("width"),
        )

    def _render_raw(self, node: Node, box: float) -> Markup:
        return Markup(node.content)

    # entry point ------------------------------------------------------------

    def compile(self, document_text: str) -> Tuple[str, List[Issue]]:
        """Return (html, validation issues); raises CompilationError when nothing can be rendered."""
        level = self.options.validation_level
        doc = parse(document_text or "")
        root = next((c for c in doc.root.children if c.tag == "mjml"), None)
        if root is None:
            raise CompilationError("Malformed MJML: missing <mjml> root element")
        body = next((c for c in root.children if c.tag == "mj-body"), None)
        if body is None:
            raise CompilationError("Malformed MJML: missing <mj-body> element")

        if level != "skip":
            for line, problem in doc.problems:
                self.issues.append(Issue(kind="parse", message=f"Line {line}: {problem}", line=line))
            for child in root.children:
                if child.tag not in ("mj-head", "mj-body"):
                    self._issue(child, f"Element <{child.tag}> is not allowed in <mjml>")

        head_node = next((c for c in root.children if c.tag == "mj-head"), None)
        if head_node is not None:
            self._read_head(head_node)
        if level != "skip":
            self._check(body)
        else:
            self.issues = []

        if level == "strict" and self.issues:
            raise CompilationError(f"MJML validation failed with {len(self.issues)} error(s)", list(self.issues))

        a = self._resolve(body)
        width = _px(a.get("width"), DEFAULT_BODY_WIDTH)
        children = [self._render(c, width) for c in body.children]
        html = self._env.get_template("document.html").render(
            lang="und",
            title=self.head.title,
            preview=self.head.preview,
            font_links=self._font_links(document_text),
            breakpoint=self.head.breakpoint,
            column_classes=list(self.column_classes.items()),
            user_css=Markup("\n".join(self.head.css)),
            background_color=a.get("background-color"),
            css_class=a.get("css-class"),
            children=children,
        )
        return html, list(self.issues)


def compile_mjml(document_text: str, options: Optional[CompileOptions] = None) -> CompilationResult:
    """Compile MJML to HTML. Failures come back as success=False, never as exceptions."""
    options = options or CompileOptions()
    compiler = MJMLCompiler(options)
    try:
        html, issues = compiler.compile(document_text)
    except CompilationError as e:
        log.warning("MJML compilation failed: %s", e.message)
        return CompilationResult(success=False, output=None, errors=e.errors, warnings=[])
    return CompilationResult(success=True, output=html, errors=[], warnings=issues)


def preview_text(document_text: str, limit: int = PREVIEW_TEXT_LIMIT) -> str:
    """Plain text of every mj-text block, joined and cut to `limit` characters."""
    doc = parse(document_text or "")
    chunks = [_plain_text(n.content) for n in doc.root.find_all("mj-text")]
    text = " ".join(c for c in chunks if c)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def mjml_stats(document_text: str) -> Dict[str, Any]:
    components: Dict[str, int] = {}
    for tag in iter_tags(document_text or ""):
        if tag.closing or not tag.name.startswith("mj-"):
            continue
        name = tag.name[3:]
        components[name] = components.get(name, 0) + 1
    return {
        "components": components,
        "totalComponents": sum(components.values()),
        "hasImages": "image" in components,
        "hasButtons": "button" in components,
        "estimatedSize": len(document_text or ""),
    }
