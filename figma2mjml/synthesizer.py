from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup, escape

from figma2mjml.analyzer import analyze, visible_in_reading_order
from figma2mjml.models import (
    Element,
    ElementKind,
    GeneratedDocument,
    Layout,
    is_near_black,
    is_transparent,
)

log = logging.getLogger(__name__)

SYNTHESIZED = "synthesized"
BRAND_BLUE = "#007bff"
PLACEHOLDER_IMAGE_URL = "https://placehold.co/600x300/f8f9fa/333333?text=Image+Placeholder"
MAX_RENDERED_TEXTS = 3
DEFAULT_BOX_HEIGHT = 50
MAX_IMAGE_WIDTH = 600


def _nl2br(value: Any) -> Markup:
    return Markup("<br />").join(escape(str(value)).split("\n"))


def _build_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
        autoescape=select_autoescape(["html", "xml", "mjml"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["nl2br"] = _nl2br
    return env


_env = _build_env()


def contrast_text_color(background: Optional[str]) -> str:
    """Two-bucket contrast: white on (near-)black, dark gray on everything else."""
    return "#ffffff" if is_near_black(background) else "#333333"


def _box_height(el: Element) -> int:
    if el.bounds is None or el.bounds.height <= 0:
        return DEFAULT_BOX_HEIGHT
    return max(1, int(round(el.bounds.height)))


def _body_blocks(elements: List[Element]) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []
    texts_rendered = 0
    for el in elements:
        if el.kind is ElementKind.TEXT:
            if texts_rendered >= MAX_RENDERED_TEXTS:
                continue
            texts_rendered += 1
            blocks.append(
                {
                    "type": "text",
                    "text": el.text or "Text content",
                    "font_size": f"{el.font_size_px:g}px",
                    "font_weight": "600" if el.font_weight > 500 else "400",
                    "color": el.color,
                }
            )
        elif el.kind is ElementKind.COLORED_BOX:
            if is_transparent(el.background_color):
                blocks.append({"type": "spacer", "height": _box_height(el)})
            else:
                blocks.append(
                    {
                        "type": "colored",
                        "color": el.background_color,
                        "height": _box_height(el),
                        "label": el.name or "Colored section",
                        "label_color": contrast_text_color(el.background_color),
                    }
                )
        elif el.kind is ElementKind.IMAGE_REF:
            # images collapse into the single placeholder block below the body
            continue
        elif el.kind is ElementKind.OTHER:
            continue
        else:
            raise AssertionError(f"unhandled element kind: {el.kind!r}")
    return blocks


def _image_width(images: List[Element]) -> int:
    for img in images:
        if img.bounds is not None and img.bounds.width > 0:
            return max(1, min(MAX_IMAGE_WIDTH, int(round(img.bounds.width))))
    return MAX_IMAGE_WIDTH


class TemplateSynthesizer:
    """Deterministic, AI-free MJML builder. Total over any Layout."""

    name = SYNTHESIZED

    def __init__(self, env: Optional[Environment] = None) -> None:
        self._env = env or _env

    def synthesize(self, layout: Layout, source_name: str) -> GeneratedDocument:
        elements = visible_in_reading_order(layout.elements)
        profile = analyze(elements)
        primary_color = profile.primary_colors[0] if profile.primary_colors else BRAND_BLUE
        text_color = contrast_text_color(primary_color)
        body_background = None
        if not is_transparent(layout.background_color):
            body_background = layout.background_color

        raw = self._env.get_template("email.mjml").render(
            source_name=source_name or "Untitled",
            layout=layout,
            profile=profile,
            layout_type=profile.layout_type.value,
            primary_color=primary_color,
            text_color=text_color,
            body_background=body_background,
            blocks=_body_blocks(elements),
            summary_colors=profile.primary_colors[:2],
            placeholder_url=PLACEHOLDER_IMAGE_URL,
            image_width=_image_width(profile.image_elements),
            element_count=len(layout.elements),
        )
        log.info(
            "Synthesized template for %r: layout_type=%s texts=%d colored=%d images=%d",
            layout.name,
            profile.layout_type.value,
            len(profile.text_elements),
            len(profile.colored_elements),
            len(profile.image_elements),
        )
        return GeneratedDocument(
            source_provider=SYNTHESIZED,
            used_fallback=True,
            raw=raw,
            model="intelligent-fallback",
        )
