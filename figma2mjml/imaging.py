from __future__ import annotations

import io
import logging
import os
from typing import List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from figma2mjml.models import (
    Bounds,
    Element,
    ElementKind,
    ImageMetadata,
    Issue,
    Layout,
    LayoutDescription,
)

log = logging.getLogger(__name__)

ACCEPTED_FORMATS = ("png", "jpeg", "gif", "webp")
LARGE_IMAGE_BYTES = 2 * 1024 * 1024


class ImageInputError(Exception):
    """Rejected upload; status_code is the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def read_image_metadata(data: bytes) -> ImageMetadata:
    """Width, height and format of an encoded image; fields stay unknown when Pillow can't read it."""
    meta = ImageMetadata(size=len(data or b""))
    if not data:
        return meta
    try:
        with Image.open(io.BytesIO(data)) as img:
            meta.width, meta.height = img.size
            meta.format = (img.format or "unknown").lower()
    except (UnidentifiedImageError, OSError) as e:
        log.info("Could not identify uploaded image: %r", e)
    return meta


def validate_image_for_email(data: bytes, max_bytes: int) -> Tuple[ImageMetadata, List[Issue]]:
    """Reject empty, oversized or unsupported uploads; return metadata plus soft warnings."""
    if not data:
        raise ImageInputError("No image file provided", status_code=400)
    if len(data) > max_bytes:
        raise ImageInputError(
            f"Image is too large ({len(data) / (1024 * 1024):.1f}MB); the limit is {max_bytes / (1024 * 1024):.0f}MB",
            status_code=413,
        )
    meta = read_image_metadata(data)
    if meta.format not in ACCEPTED_FORMATS:
        raise ImageInputError(
            f"Format '{meta.format}' may not be supported in all email clients. Use JPEG, PNG, GIF or WEBP.",
            status_code=415,
        )

    warnings: List[Issue] = []
    if meta.size > LARGE_IMAGE_BYTES:
        warnings.append(
            Issue(
                kind="image-size",
                message=f"Image is large ({meta.size / (1024 * 1024):.1f}MB). Consider optimizing for email.",
            )
        )
    if meta.format == "webp":
        warnings.append(
            Issue(kind="image-format", message="WEBP is not supported by every email client. Consider PNG or JPEG.")
        )
    return meta, warnings


def layout_from_image(meta: ImageMetadata, filename: Optional[str]) -> LayoutDescription:
    """A single frame holding one full-bleed image element."""
    name = os.path.splitext(os.path.basename(filename or ""))[0] or "Uploaded image"
    width = meta.width or 600
    height = meta.height or 400
    image = Element(
        kind=ElementKind.IMAGE_REF,
        name=name,
        bounds=Bounds(x=0, y=0, width=width, height=height),
    )
    frame = Layout(name=name, width=width, height=height, elements=[image])
    return LayoutDescription(source_name=filename or name, frame=frame)
