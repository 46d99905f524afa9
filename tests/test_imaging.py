import io

import pytest
from PIL import Image

from figma2mjml.imaging import (
    ImageInputError,
    layout_from_image,
    read_image_metadata,
    validate_image_for_email,
)
from figma2mjml.models import ElementKind


def _image_bytes(fmt="PNG", size=(320, 200)):
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, fmt)
    return buf.getvalue()


def test_reads_metadata_with_pillow():
    data = _image_bytes()
    meta = read_image_metadata(data)
    assert (meta.width, meta.height) == (320, 200)
    assert meta.format == "png"
    assert meta.size == len(data)


def test_unreadable_bytes_keep_unknown_format():
    meta = read_image_metadata(b"definitely not an image")
    assert meta.format == "unknown"
    assert meta.width is None


def test_validate_accepts_png_and_jpeg():
    for fmt in ("PNG", "JPEG", "GIF"):
        meta, warnings = validate_image_for_email(_image_bytes(fmt), 10 * 1024 * 1024)
        assert meta.format == fmt.lower()
        assert warnings == []


@pytest.mark.parametrize(
    "data, max_bytes, status",
    [
        (b"", 1024, 400),
        (b"x" * 2048, 1024, 413),
        (b"not an image", 1024, 415),
    ],
)
def test_validate_rejections(data, max_bytes, status):
    with pytest.raises(ImageInputError) as exc:
        validate_image_for_email(data, max_bytes)
    assert exc.value.status_code == status


def test_bmp_is_rejected():
    with pytest.raises(ImageInputError) as exc:
        validate_image_for_email(_image_bytes("BMP"), 10 * 1024 * 1024)
    assert exc.value.status_code == 415
    assert "bmp" in exc.value.message


def test_layout_from_image():
    meta = read_image_metadata(_image_bytes(size=(500, 250)))
    description = layout_from_image(meta, "uploads/hero-banner.png")
    assert description.source_name == "uploads/hero-banner.png"
    frame = description.frame
    assert frame.name == "hero-banner"
    assert (frame.width, frame.height) == (500, 250)
    assert [el.kind for el in frame.elements] == [ElementKind.IMAGE_REF]
    assert frame.elements[0].bounds.width == 500


def test_layout_from_unknown_image_defaults():
    meta = read_image_metadata(b"")
    description = layout_from_image(meta, None)
    assert description.frame.name == "Uploaded image"
    assert (description.frame.width, description.frame.height) == (600, 400)
