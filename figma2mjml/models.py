from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_TEXT_COLOR = "#333333"
DEFAULT_FONT_SIZE_PX = 14.0
DEFAULT_FONT_WEIGHT = 400.0
DEFAULT_FRAME_WIDTH = 600
DEFAULT_FRAME_HEIGHT = 800

_HEX_RE = re.compile(r"^#([0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_RGB_RE = re.compile(r"^rgba?\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*(?:,\s*([\d.]+)\s*)?\)$", re.IGNORECASE)
_NAMED = {"black": (0, 0, 0), "white": (255, 255, 255)}


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _channel(value: Any, scale: bool) -> int:
    v = float(value)
    if scale:
        v *= 255
    return max(0, min(255, int(round(v))))


def _format_alpha(a: float) -> str:
    return f"{round(max(0.0, min(1.0, a)), 3):g}"


def normalize_color(value: Any) -> Optional[str]:
    """Turn an RGB/RGBA tuple, a Figma {r,g,b,a} dict or a CSS string into a CSS color string.

    Figma dicts carry 0-1 floats and are scaled to 0-255 when r, g and b are
    all <= 1. Tuples are 0-255 channels unless at least one channel is a
    float and none exceeds 1, so (1, 1, 1) stays near-black while
    (1.0, 1.0, 1.0) is white.
    """
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip()
        return s or None
    if isinstance(value, dict):
        parts = [value.get("r", 0), value.get("g", 0), value.get("b", 0)]
        alpha = value.get("a", 1)
        scale = all(float(p) <= 1.0 for p in parts)
    elif isinstance(value, (list, tuple)) and len(value) in (3, 4):
        parts = list(value[:3])
        alpha = value[3] if len(value) == 4 else 1
        scale = any(isinstance(p, float) for p in parts) and all(float(p) <= 1.0 for p in parts)
    else:
        raise ValueError(f"unsupported color value: {value!r}")
    r, g, b = (_channel(p, scale) for p in parts)
    a = float(alpha if alpha is not None else 1)
    if a >= 1:
        return f"rgb({r}, {g}, {b})"
    return f"rgba({r}, {g}, {b}, {_format_alpha(a)})"


def parse_rgba(color: Optional[str]) -> Optional[Tuple[int, int, int, float]]:
    """Best-effort parse of a CSS color string; None when the format is not understood."""
    if not color:
        return None
    s = color.strip().lower()
    if s in _NAMED:
        return _NAMED[s] + (1.0,)
    if s == "transparent":
        return (0, 0, 0, 0.0)
    m = _HEX_RE.match(s)
    if m:
        digits = m.group(1)
        if len(digits) in (3, 4):
            digits = "".join(ch * 2 for ch in digits)
        r, g, b = (int(digits[i : i + 2], 16) for i in (0, 2, 4))
        a = int(digits[6:8], 16) / 255 if len(digits) == 8 else 1.0
        return (r, g, b, a)
    m = _RGB_RE.match(s)
    if m:
        r, g, b = (_channel(m.group(i), False) for i in (1, 2, 3))
        a = float(m.group(4)) if m.group(4) is not None else 1.0
        return (r, g, b, a)
    return None


def is_transparent(color: Optional[str]) -> bool:
    if not color:
        return True
    parsed = parse_rgba(color)
    return parsed is not None and parsed[3] <= 0


def is_near_black(color: Optional[str]) -> bool:
    parsed = parse_rgba(color)
    if parsed is None:
        return False
    r, g, b, _ = parsed
    return (0.299 * r + 0.587 * g + 0.114 * b) < 40


class ElementKind(str, Enum):
    TEXT = "text"
    IMAGE_REF = "image_ref"
    COLORED_BOX = "colored_box"
    OTHER = "other"

    @classmethod
    def from_tag(cls, tag: Any, has_image: bool = False) -> "ElementKind":
        """Map a source-system type tag (Figma node type or our own value) onto the closed set."""
        if isinstance(tag, ElementKind):
            return tag
        t = str(tag or "").strip().lower().replace("-", "_")
        if t == "text":
            return cls.TEXT
        if t in {"image", "image_ref", "imageref"}:
            return cls.IMAGE_REF
        if t in {"rectangle", "frame", "colored_box", "coloredbox", "box"}:
            return cls.IMAGE_REF if has_image else cls.COLORED_BOX
        return cls.OTHER


class LayoutType(str, Enum):
    RICH_CONTENT = "rich-content"
    TEXT_FOCUSED = "text-focused"
    IMAGE_FOCUSED = "image-focused"
    MINIMAL = "minimal"


class Bounds(_Model):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class Element(_Model):
    kind: ElementKind = ElementKind.OTHER
    name: str = ""
    bounds: Optional[Bounds] = None
    visible: bool = True
    text: str = ""
    font_size_px: float = DEFAULT_FONT_SIZE_PX
    font_weight: float = DEFAULT_FONT_WEIGHT
    color: str = DEFAULT_TEXT_COLOR
    background_color: Optional[str] = None
    image_ref: Optional[str] = None
    children: List["Element"] = Field(default_factory=list)

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v: Any) -> ElementKind:
        return ElementKind.from_tag(v)

    @field_validator("font_size_px", mode="before")
    @classmethod
    def _default_font_size(cls, v: Any) -> Any:
        return DEFAULT_FONT_SIZE_PX if v in (None, "", 0) else v

    @field_validator("font_weight", mode="before")
    @classmethod
    def _default_font_weight(cls, v: Any) -> Any:
        return DEFAULT_FONT_WEIGHT if v in (None, "", 0) else v

    @field_validator("color", mode="before")
    @classmethod
    def _normalize_text_color(cls, v: Any) -> str:
        return normalize_color(v) or DEFAULT_TEXT_COLOR

    @field_validator("background_color", mode="before")
    @classmethod
    def _normalize_background(cls, v: Any) -> Optional[str]:
        return normalize_color(v)

    @field_validator("text", "name", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Layout(_Model):
    name: str = "Untitled"
    width: int = DEFAULT_FRAME_WIDTH
    height: int = DEFAULT_FRAME_HEIGHT
    background_color: Optional[str] = None
    elements: List[Element] = Field(default_factory=list)
    page: Optional[str] = None

    @field_validator("width", mode="before")
    @classmethod
    def _default_width(cls, v: Any) -> Any:
        return _positive_int(v, DEFAULT_FRAME_WIDTH)

    @field_validator("height", mode="before")
    @classmethod
    def _default_height(cls, v: Any) -> Any:
        return _positive_int(v, DEFAULT_FRAME_HEIGHT)

    @field_validator("background_color", mode="before")
    @classmethod
    def _normalize_background(cls, v: Any) -> Optional[str]:
        return normalize_color(v)

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v: Any) -> Any:
        return v if isinstance(v, str) and v.strip() else "Untitled"

    @field_validator("elements", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v


def _positive_int(v: Any, default: int) -> int:
    try:
        n = int(round(float(v)))
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


class LayoutDescription(_Model):
    source_name: str = "Untitled"
    frame: Layout = Field(default_factory=Layout)


class TextSummary(_Model):
    text: str
    font_size_px: float = DEFAULT_FONT_SIZE_PX
    color: str = DEFAULT_TEXT_COLOR
    font_weight: float = DEFAULT_FONT_WEIGHT


class LayoutProfile(_Model):
    has_text: bool = False
    has_images: bool = False
    has_colored_sections: bool = False
    text_elements: List[TextSummary] = Field(default_factory=list)
    colored_elements: List[Element] = Field(default_factory=list)
    image_elements: List[Element] = Field(default_factory=list)
    primary_colors: List[str] = Field(default_factory=list)
    layout_type: LayoutType = LayoutType.MINIMAL


class GeneratedDocument(_Model):
    source_provider: str
    used_fallback: bool
    raw: str
    model: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


class ProviderResponse(_Model):
    success: bool
    raw_text: str
    usage: Optional[Dict[str, Any]] = None
    model: Optional[str] = None


class Issue(_Model):
    kind: str
    message: str
    fix: Optional[str] = None
    line: Optional[int] = None


class ValidationReport(_Model):
    is_valid: bool
    corrected_document: str
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)


class ProviderAttempt(_Model):
    provider: str
    error_message: str


class GenerationResult(_Model):
    document: GeneratedDocument
    provider_used: str
    used_fallback: bool
    attempt_errors: List[ProviderAttempt] = Field(default_factory=list)


class CompilationResult(_Model):
    success: bool
    output: Optional[str] = None
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)


class ConversionResult(_Model):
    success: bool
    mjml: str
    html: Optional[str] = None
    used_fallback: bool
    provider_used: str
    attempt_errors: List[ProviderAttempt] = Field(default_factory=list)
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)
    processing_time_ms: int = 0
    stats: Dict[str, Any] = Field(default_factory=dict)


class FigmaFile(_Model):
    file_name: str = "Untitled"
    last_modified: Optional[str] = None
    layouts: List[Layout] = Field(default_factory=list)


class ImageMetadata(_Model):
    width: Optional[int] = None
    height: Optional[int] = None
    format: str = "unknown"
    size: int = 0


Element.model_rebuild()
