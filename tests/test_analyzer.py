from figma2mjml.analyzer import analyze, classify_layout, visible_in_reading_order
from figma2mjml.models import Bounds, Element, ElementKind, LayoutType


def _text(text, y=None, x=0, **kw):
    bounds = Bounds(x=x, y=y, width=100, height=20) if y is not None else None
    return Element(kind="text", text=text, bounds=bounds, **kw)


def _box(color, y=None, **kw):
    bounds = Bounds(x=0, y=y, width=100, height=40) if y is not None else None
    return Element(kind="colored_box", background_color=color, bounds=bounds, **kw)


def test_empty_input_is_minimal():
    profile = analyze([])
    assert profile.has_text is False
    assert profile.has_images is False
    assert profile.has_colored_sections is False
    assert profile.text_elements == []
    assert profile.primary_colors == []
    assert profile.layout_type == LayoutType.MINIMAL


def test_rich_content_wins_over_text_focused():
    profile = analyze([_text("Hi"), Element(kind="image_ref"), _box("#f0f0f0")])
    assert profile.has_text and profile.has_images and profile.has_colored_sections
    assert profile.layout_type == LayoutType.RICH_CONTENT


def test_classification_priority_order():
    assert classify_layout(True, True, True) == LayoutType.RICH_CONTENT
    assert classify_layout(True, False, True) == LayoutType.TEXT_FOCUSED
    assert classify_layout(True, True, False) == LayoutType.IMAGE_FOCUSED
    assert classify_layout(False, True, True) == LayoutType.IMAGE_FOCUSED
    assert classify_layout(True, False, False) == LayoutType.MINIMAL
    assert classify_layout(False, False, True) == LayoutType.MINIMAL


def test_text_elements_keep_input_order_and_full_text():
    long_text = "x" * 500
    profile = analyze([_text("second", y=50), _text(long_text, y=10)])
    assert [t.text for t in profile.text_elements] == ["second", long_text]


def test_primary_colors_are_distinct_in_insertion_order():
    profile = analyze([_box("#ff0000"), _box("#00ff00"), _box("#ff0000"), _box("#0000ff")])
    assert profile.primary_colors == ["#ff0000", "#00ff00", "#0000ff"]
    assert len(profile.colored_elements) == 4


def test_transparent_boxes_are_not_colored_sections():
    profile = analyze([_box(None), _box("rgba(10, 10, 10, 0)"), _box("transparent")])
    assert profile.has_colored_sections is False
    assert profile.primary_colors == []


def test_other_elements_are_ignored():
    profile = analyze([Element(kind="VECTOR"), Element(kind="GROUP")])
    assert profile.layout_type == LayoutType.MINIMAL


def test_unrecognized_tags_become_other():
    assert Element(kind="ELLIPSE").kind is ElementKind.OTHER
    assert Element(kind="TEXT").kind is ElementKind.TEXT
    assert Element(kind="RECTANGLE").kind is ElementKind.COLORED_BOX


def test_reading_order_sorts_by_y_then_x_and_unknown_last():
    a = _text("a", y=100, x=50)
    b = _text("b", y=100, x=10)
    c = _text("c", y=5)
    unknown_1 = _text("u1")
    unknown_2 = _text("u2")
    ordered = visible_in_reading_order([unknown_1, a, unknown_2, b, c])
    assert [el.text for el in ordered] == ["c", "b", "a", "u1", "u2"]


def test_reading_order_drops_invisible_and_flattens_children():
    hidden_parent = Element(kind="FRAME", visible=False, children=[_text("hidden child", y=1)])
    parent = Element(
        kind="FRAME",
        bounds=Bounds(x=0, y=0, width=600, height=400),
        children=[_text("inner", y=20), _text("ghost", y=30, visible=False)],
    )
    ordered = visible_in_reading_order([hidden_parent, parent])
    texts = [el.text for el in ordered if el.kind is ElementKind.TEXT]
    assert texts == ["inner"]
