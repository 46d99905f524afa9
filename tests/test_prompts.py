from figma2mjml.models import Bounds, Element, Layout, LayoutDescription
from figma2mjml.prompts import MAX_PROMPT_TEXTS, SYSTEM_PROMPT, build_layout_prompt


def _description(elements, **frame):
    return LayoutDescription(source_name="Campaign", frame=Layout(name="Hero", elements=elements, **frame))


def test_empty_frame_prompt():
    prompt = build_layout_prompt(_description([], width=640, height=480))
    assert "- File: Campaign" in prompt
    assert "- Frame: Hero (640x480px)" in prompt
    assert "No specific elements found" in prompt
    assert "```mjml" in prompt


def test_inventory_lists_texts_in_reading_order_and_truncates():
    long_text = "word " * 40
    elements = [
        Element(kind="text", text="Second", bounds=Bounds(y=50)),
        Element(kind="text", text="First", font_weight=700, font_size_px=24, bounds=Bounds(y=10)),
        Element(kind="text", text=long_text, bounds=Bounds(y=90)),
    ]
    prompt = build_layout_prompt(_description(elements))
    assert prompt.index('"First"') < prompt.index('"Second"')
    assert "(24px bold, #333333)" in prompt
    assert "- Text elements: 3" in prompt
    assert "..." in prompt
    assert long_text.strip() not in prompt


def test_inventory_caps_texts():
    elements = [Element(kind="text", text=f"T{i}", bounds=Bounds(y=i)) for i in range(MAX_PROMPT_TEXTS + 2)]
    prompt = build_layout_prompt(_description(elements))
    assert f'"T{MAX_PROMPT_TEXTS - 1}"' in prompt
    assert f'"T{MAX_PROMPT_TEXTS}"' not in prompt


def test_images_and_colors_listed():
    elements = [
        Element(kind="image_ref", name="Banner", bounds=Bounds(width=600, height=200)),
        Element(kind="colored_box", background_color="#ff0000"),
        Element(kind="colored_box", background_color="#ff0000"),
    ]
    prompt = build_layout_prompt(_description(elements, background_color="#ffffff"))
    assert "- Banner (600x200px)" in prompt
    assert "**Background colors:** #ff0000" in prompt
    assert "- Background: #ffffff" in prompt


def test_system_prompt_states_the_known_pitfalls():
    assert "border-radius" in SYSTEM_PROMPT
    assert "alt" in SYSTEM_PROMPT
    assert "mj-section inside mj-column" in SYSTEM_PROMPT
