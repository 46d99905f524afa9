import pytest

from figma2mjml.models import (
    Element,
    Layout,
    is_near_black,
    is_transparent,
    normalize_color,
)


def test_float_components_are_scaled_to_css():
    assert normalize_color((1.0, 0, 0)) == "rgb(255, 0, 0)"
    assert normalize_color((0.5, 0.5, 0.5, 0.5)) == "rgba(128, 128, 128, 0.5)"
    assert normalize_color({"r": 0, "g": 0, "b": 0, "a": 0.5}) == "rgba(0, 0, 0, 0.5)"
    assert normalize_color({"r": 0.2, "g": 0.4, "b": 0.6, "a": 1}) == "rgb(51, 102, 153)"


def test_byte_components_pass_through():
    assert normalize_color((255, 128, 0)) == "rgb(255, 128, 0)"
    assert normalize_color([10, 20, 30, 0.25]) == "rgba(10, 20, 30, 0.25)"


def test_small_integer_tuples_stay_dark():
    assert normalize_color((1, 1, 1)) == "rgb(1, 1, 1)"
    assert is_near_black(normalize_color((1, 1, 1)))
    assert normalize_color((1.0, 1.0, 1.0)) == "rgb(255, 255, 255)"


def test_css_strings_are_kept():
    assert normalize_color("#f0f0f0") == "#f0f0f0"
    assert normalize_color("  ") is None
    assert normalize_color(None) is None


def test_unsupported_color_shape_raises():
    with pytest.raises(ValueError):
        normalize_color(42)


def test_element_defaults():
    el = Element(kind="text", text="Hello", font_size_px=None, font_weight=None, color=None)
    assert el.font_size_px == 14
    assert el.font_weight == 400
    assert el.color == "#333333"
    assert el.visible is True


def test_element_accepts_camel_case_payload():
    el = Element.model_validate(
        {"kind": "colored_box", "backgroundColor": {"r": 1, "g": 1, "b": 1}, "fontSizePx": 20}
    )
    assert el.background_color == "rgb(255, 255, 255)"
    assert el.font_size_px == 20


def test_layout_dimensions_fall_back_to_defaults():
    layout = Layout(name="", width=0, height=-5, elements=None)
    assert layout.name == "Untitled"
    assert layout.width == 600
    assert layout.height == 800
    assert layout.elements == []


def test_transparency_and_darkness_helpers():
    assert is_transparent(None)
    assert is_transparent("rgba(0, 0, 0, 0)")
    assert not is_transparent("#ffffff")
    assert is_near_black("#000000")
    assert is_near_black("rgb(10, 10, 10)")
    assert not is_near_black("#f0f0f0")
    assert not is_near_black("not-a-color")
