from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from figma2mjml.markup import Tag, apply_edits, iter_tags, parse, render_tag
from figma2mjml.models import Issue, ValidationReport

log = logging.getLogger(__name__)

DEFAULT_ALT_TEXT = "Image"

_PADDING_VALUE = r"(?:\d+(?:\.\d+)?px|0)"
_TWO_VALUE_PADDING_RE = re.compile(rf"^\s*({_PADDING_VALUE})\s+({_PADDING_VALUE})\s*$")
_SIDES = ("padding-top", "padding-right", "padding-bottom", "padding-left")

# containers that may only live directly under mj-body / mj-wrapper
_SECTION_LIKE = ("mj-section", "mj-wrapper")
_COLUMN_LIKE = ("mj-column", "mj-group")

Edit = Tuple[int, int, str]


def _opening_tags(text: str, name: str) -> List[Tag]:
    return [t for t in iter_tags(text) if t.name == name and not t.closing]


def _strip_text_border_radius(text: str, warnings: List[Issue]) -> str:
    edits: List[Edit] = []
    for tag in _opening_tags(text, "mj-text"):
        if not tag.has("border-radius"):
            continue
        radius = tag.get("border-radius")
        tag.attrs = [(k, v) for k, v in tag.attrs if k.lower() != "border-radius"]
        edits.append((tag.start, tag.end, render_tag(tag)))
        warnings.append(
            Issue(
                kind="invalid-attribute",
                message="border-radius is not valid on mj-text. Use CSS classes or mj-wrapper instead.",
                fix=f'Removed border-radius="{radius or ""}" from mj-text',
                line=tag.line,
            )
        )
    return apply_edits(text, edits)


def _expand_padding(tag: Tag) -> Optional[Tuple[str, str]]:
    """Rewrite a two-value padding on `tag` in place; returns (vertical, horizontal) when it did."""
    padding = tag.get("padding")
    if padding is None:
        return None
    m = _TWO_VALUE_PADDING_RE.match(padding)
    if not m:
        return None
    vertical, horizontal = m.group(1), m.group(2)
    values = dict(zip(_SIDES, (vertical, horizontal, vertical, horizontal)))
    rebuilt: List[Tuple[str, Optional[str]]] = []
    expanded = False
    for k, v in tag.attrs:
        if k.lower() != "padding":
            rebuilt.append((k, v))
            continue
        # repeated padding attributes collapse into the first one
        if expanded:
            continue
        expanded = True
        # per-side attributes already present take precedence over the shorthand
        for side in _SIDES:
            if not tag.has(side):
                rebuilt.append((side, values[side]))
    tag.attrs = rebuilt
    return vertical, horizontal


def _rewrite_shorthand_padding(text: str, warnings: List[Issue]) -> str:
    edits: List[Edit] = []
    for tag in iter_tags(text):
        if tag.closing or not tag.name.startswith("mj-"):
            continue
        original = tag.get("padding")
        expanded = _expand_padding(tag)
        if expanded is None:
            continue
        vertical, horizontal = expanded
        edits.append((tag.start, tag.end, render_tag(tag)))
        warnings.append(
            Issue(
                kind="padding-format",
                message=f"Converted shorthand padding on {tag.name} to individual attributes",
                fix=(
                    f'padding="{original}" -> padding-top="{vertical}" padding-right="{horizontal}" '
                    f'padding-bottom="{vertical}" padding-left="{horizontal}"'
                ),
                line=tag.line,
            )
        )
    return apply_edits(text, edits)


def _check_nesting(text: str, errors: List[Issue]) -> None:
    doc = parse(text)
    for name in _SECTION_LIKE:
        for node in doc.root.find_all(name):
            container = next((a for a in node.ancestors() if a.tag in _COLUMN_LIKE), None)
            if container is None:
                continue
            errors.append(
                Issue(
                    kind="structural-error",
                    message=f"{name} cannot be nested inside {container.tag} (line {node.line})",
                    line=node.line,
                )
            )


def _add_missing_alt(text: str, warnings: List[Issue]) -> str:
    edits: List[Edit] = []
    for tag in _opening_tags(text, "mj-image"):
        if tag.has("alt"):
            continue
        tag.attrs.append(("alt", DEFAULT_ALT_TEXT))
        edits.append((tag.start, tag.end, render_tag(tag)))
        warnings.append(
            Issue(
                kind="missing-attribute",
                message="Added missing alt attribute to mj-image for accessibility",
                fix=f'alt="{DEFAULT_ALT_TEXT}"',
                line=tag.line,
            )
        )
    return apply_edits(text, edits)


def validate_and_correct(document_text: str) -> ValidationReport:
    """Repair known-invalid MJML patterns and report what changed.

    Rules run in a fixed order and each re-scans the output of the previous
    one. Structural nesting problems are reported as errors and left alone;
    everything else is rewritten and reported as a warning. Running this on
    its own output changes nothing.
    """
    errors: List[Issue] = []
    warnings: List[Issue] = []
    corrected = document_text or ""

    corrected = _strip_text_border_radius(corrected, warnings)
    corrected = _rewrite_shorthand_padding(corrected, warnings)
    _check_nesting(corrected, errors)
    corrected = _add_missing_alt(corrected, warnings)

    if warnings or errors:
        log.info("Validation: %d warning(s), %d error(s)", len(warnings), len(errors))
    return ValidationReport(
        is_valid=not errors,
        corrected_document=corrected,
        errors=errors,
        warnings=warnings,
    )