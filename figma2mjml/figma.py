from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from figma2mjml.models import (
    Bounds,
    Element,
    ElementKind,
    FigmaFile,
    Layout,
    LayoutDescription,
    normalize_color,
)

log = logging.getLogger(__name__)

FIGMA_API_BASE = "https://api.figma.com/v1"
MIN_FRAME_SIZE = 200
MAX_EMAIL_WIDTH = 800
MIN_EMAIL_HEIGHT = 100
MAX_EMAIL_FRAMES = 5


class FigmaError(Exception):
    """Design-source failure carrying the upstream HTTP status."""

    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FigmaClient:
    def __init__(self, token: str, timeout: float = 30.0, base_url: str = FIGMA_API_BASE) -> None:
        self.token = token
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def fetch_file(self, file_id: str) -> Dict[str, Any]:
        url = f"{self.base_url}/files/{file_id}"
        try:
            resp = requests.get(url, headers={"X-Figma-Token": self.token}, timeout=self.timeout)
        except Exception as e:
            raise FigmaError(f"Figma request error: {type(e).__name__}") from e
        if resp.status_code != 200:
            try:
                detail = resp.text[:400]
            except Exception:
                detail = ""
            raise FigmaError(f"Figma API error: {resp.status_code} {detail}".strip(), status_code=resp.status_code)
        try:
            data = resp.json()
        except Exception as e:
            raise FigmaError("Figma API returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise FigmaError("Figma API returned an unexpected payload")
        return data


def _fill_color(fill: Dict[str, Any]) -> Optional[str]:
    color = fill.get("color")
    if not isinstance(color, dict):
        return None
    opacity = fill.get("opacity")
    if opacity is not None and opacity < 1:
        color = dict(color, a=float(color.get("a", 1)) * float(opacity))
    return normalize_color(color)


def _visible_fills(node: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [f for f in node.get("fills") or [] if isinstance(f, dict) and f.get("visible", True)]


def _bounds(node: Dict[str, Any]) -> Optional[Bounds]:
    box = node.get("absoluteBoundingBox")
    if not isinstance(box, dict):
        return None
    return Bounds(
        x=round(box.get("x") or 0),
        y=round(box.get("y") or 0),
        width=round(box.get("width") or 0),
        height=round(box.get("height") or 0),
    )


def _to_element(node: Dict[str, Any]) -> Element:
    node_type = str(node.get("type") or "")
    fills = _visible_fills(node)
    data: Dict[str, Any] = {
        "name": node.get("name") or "",
        "visible": node.get("visible") is not False,
        "bounds": _bounds(node),
    }

    image_fill = next((f for f in fills if f.get("type") == "IMAGE"), None)
    solid = next((c for c in (_fill_color(f) for f in fills if f.get("type") == "SOLID") if c), None)

    if node_type == "TEXT":
        style = node.get("style") or {}
        data.update(
            kind=ElementKind.TEXT,
            text=node.get("characters") or "",
            font_size_px=style.get("fontSize"),
            font_weight=style.get("fontWeight"),
            color=solid,
        )
    elif image_fill is not None and node_type in ("RECTANGLE", "FRAME"):
        data.update(kind=ElementKind.IMAGE_REF, image_ref=image_fill.get("imageRef"))
    elif solid is not None:
        data.update(kind=ElementKind.COLORED_BOX, background_color=solid)
    else:
        data["kind"] = ElementKind.from_tag(node_type)

    children = node.get("children") or []
    if children:
        data["children"] = [_to_element(c) for c in children if isinstance(c, dict)]
    return Element(**data)


def extract_layouts(figma_data: Dict[str, Any]) -> FigmaFile:
    """Reduce a Figma file document to top-level frames, sorted by page then position."""
    entries: List[Tuple[str, float, float, Layout]] = []
    document = figma_data.get("document") or {}
    for page in document.get("children") or []:
        page_name = page.get("name") or ""
        for frame in page.get("children") or []:
            if frame.get("type") != "FRAME":
                continue
            box = frame.get("absoluteBoundingBox") or {}
            width = box.get("width") or 0
            height = box.get("height") or 0
            if width < MIN_FRAME_SIZE or height < MIN_FRAME_SIZE:
                continue
            layout = Layout(
                name=frame.get("name") or "Untitled",
                page=page_name,
                width=round(width),
                height=round(height),
                background_color=normalize_color(frame.get("backgroundColor")),
                elements=[_to_element(c) for c in frame.get("children") or [] if isinstance(c, dict)],
            )
            entries.append((page_name, round(box.get("y") or 0), round(box.get("x") or 0), layout))

    entries.sort(key=lambda e: (e[0], e[1], e[2]))
    return FigmaFile(
        file_name=figma_data.get("name") or "Untitled",
        last_modified=figma_data.get("lastModified"),
        layouts=[e[3] for e in entries],
    )


def email_suitable_frames(layouts: List[Layout]) -> List[Layout]:
    suitable = [
        layout
        for layout in layouts
        if layout.width <= MAX_EMAIL_WIDTH and layout.height > MIN_EMAIL_HEIGHT and layout.elements
    ]
    return suitable[:MAX_EMAIL_FRAMES]


def to_layout_description(file_name: str, frames: List[Layout]) -> LayoutDescription:
    """Only the first frame is processed per request."""
    if not frames:
        raise ValueError("at least one frame is required")
    return LayoutDescription(source_name=file_name, frame=frames[0])
