from __future__ import annotations

from typing import Iterable, List, Tuple

from figma2mjml.models import (
    Element,
    ElementKind,
    LayoutProfile,
    LayoutType,
    TextSummary,
    is_transparent,
)


def _reading_order_key(indexed: Tuple[int, Element]) -> Tuple[int, float, float, int]:
    idx, el = indexed
    if el.bounds is None:
        # unknown position sorts after positioned elements, in discovery order
        return (1, 0.0, 0.0, idx)
    return (0, el.bounds.y, el.bounds.x, idx)


def _flatten_visible(elements: Iterable[Element]) -> List[Element]:
    out: List[Element] = []
    for el in elements:
        if not el.visible:
            continue
        out.append(el)
        if el.children:
            out.extend(_flatten_visible(el.children))
    return out


def visible_in_reading_order(elements: Iterable[Element]) -> List[Element]:
    """Visible elements (children included) sorted top-to-bottom, then left-to-right."""
    flat = _flatten_visible(elements)
    return [el for _, el in sorted(enumerate(flat), key=_reading_order_key)]


def classify_layout(has_text: bool, has_images: bool, has_colored_sections: bool) -> LayoutType:
    if has_text and has_images and has_colored_sections:
        return LayoutType.RICH_CONTENT
    if has_text and has_colored_sections:
        return LayoutType.TEXT_FOCUSED
    if has_images:
        return LayoutType.IMAGE_FOCUSED
    return LayoutType.MINIMAL


def analyze(elements: Iterable[Element]) -> LayoutProfile:
    """Aggregate facts about a list of elements. Input order is preserved in every list."""
    profile = LayoutProfile()
    for el in elements:
        if el.kind is ElementKind.TEXT:
            profile.has_text = True
            profile.text_elements.append(
                TextSummary(
                    text=el.text,
                    font_size_px=el.font_size_px,
                    color=el.color,
                    font_weight=el.font_weight,
                )
            )
        elif el.kind is ElementKind.IMAGE_REF:
            profile.has_images = True
            profile.image_elements.append(el)
        elif el.kind is ElementKind.COLORED_BOX:
            if is_transparent(el.background_color):
                continue
            profile.has_colored_sections = True
            profile.colored_elements.append(el)
            if el.background_color not in profile.primary_colors:
                profile.primary_colors.append(el.background_color)
        elif el.kind is ElementKind.OTHER:
            continue
        else:
            raise AssertionError(f"unhandled element kind: {el.kind!r}")
    profile.layout_type = classify_layout(
        profile.has_text, profile.has_images, profile.has_colored_sections
    )
    return profile
