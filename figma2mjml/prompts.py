from __future__ import annotations

from collections import Counter
from typing import List

from figma2mjml.analyzer import visible_in_reading_order
from figma2mjml.models import Element, ElementKind, LayoutDescription

MAX_PROMPT_TEXTS = 5
MAX_PROMPT_IMAGES = 3
MAX_SNIPPET_CHARS = 50

SYSTEM_PROMPT = """You are an expert MJML email template generator. Create valid, responsive email templates.

CRITICAL RULES:
1. NEVER use border-radius on mj-text
2. NEVER nest mj-section inside mj-column
3. ALWAYS include alt attribute on mj-image
4. ALWAYS use a single padding value or per-side attributes: padding="20px", not padding="20px 10px"
5. Keep the nesting mj-body > mj-section > mj-column > content
6. Use CSS classes (mj-style + css-class) for complex styling
7. Ensure mobile responsiveness

Return the complete template in one ```mjml fenced block. Generate clean, valid MJML code only."""


def _snippet(text: str) -> str:
    s = " ".join((text or "").split())
    if len(s) > MAX_SNIPPET_CHARS:
        return s[:MAX_SNIPPET_CHARS] + "..."
    return s


def _inventory_lines(elements: List[Element]) -> List[str]:
    counts = Counter(el.kind for el in elements)
    lines = [
        f"- Text elements: {counts[ElementKind.TEXT]}",
        f"- Images: {counts[ElementKind.IMAGE_REF]}",
        f"- Colored boxes: {counts[ElementKind.COLORED_BOX]}",
        f"- Other elements: {counts[ElementKind.OTHER]}",
    ]

    texts = [el for el in elements if el.kind is ElementKind.TEXT][:MAX_PROMPT_TEXTS]
    if texts:
        lines.append("")
        lines.append("**Text content (in reading order):**")
        for el in texts:
            weight = " bold" if el.font_weight > 500 else ""
            lines.append(f'- "{_snippet(el.text)}" ({el.font_size_px:g}px{weight}, {el.color})')

    images = [el for el in elements if el.kind is ElementKind.IMAGE_REF][:MAX_PROMPT_IMAGES]
    if images:
        lines.append("")
        lines.append("**Images:**")
        for el in images:
            if el.bounds is not None:
                size = f"{el.bounds.width:g}x{el.bounds.height:g}px"
            else:
                size = "unknown size"
            lines.append(f"- {el.name or 'Image'} ({size})")

    colors = []
    for el in elements:
        if el.kind is ElementKind.COLORED_BOX and el.background_color and el.background_color not in colors:
            colors.append(el.background_color)
    if colors:
        lines.append("")
        lines.append("**Background colors:** " + ", ".join(colors))
    return lines


def build_layout_prompt(description: LayoutDescription) -> str:
    """Natural-language summary of the frame plus an element inventory, shared by every adapter."""
    frame = description.frame
    elements = visible_in_reading_order(frame.elements)
    parts = [
        "Create a responsive MJML email template based on this design:",
        "",
        "**Design Info:**",
        f"- File: {description.source_name}",
        f"- Frame: {frame.name} ({frame.width}x{frame.height}px)",
        f"- Elements: {len(elements)}",
    ]
    if frame.background_color:
        parts.append(f"- Background: {frame.background_color}")
    parts.append("")
    parts.append("**Layout Elements:**")
    if elements:
        parts.extend(_inventory_lines(elements))
    else:
        parts.append("No specific elements found")
    parts.append("")
    parts.append(
        "Generate a complete, valid MJML template that represents this design structure, "
        "wrapped in a ```mjml code block."
    )
    return "\n".join(parts)
