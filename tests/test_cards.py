import pytest

from flowbridge.platforms.feishu.cards import FeishuCardRenderer, preprocess_markdown
from flowbridge.platforms.xmpp.render import PlainTextRenderer
from flowbridge.utils import format_duration
from tests.conftest import card_text


@pytest.mark.parametrize(
    "ms, expected",
    [
        (0, "0ms"),
        (850, "850ms"),
        (1000, "1s"),
        (12_345, "12s"),
        (185_000, "3m 5s"),
        (3_723_000, "1h 2m 3s"),
    ],
)
def test_format_duration(ms, expected):
    assert format_duration(ms) == expected


def test_preprocess_markdown_rewrites_unsupported_syntax():
    text = "Use `pip` and **care**, *maybe*. ![diagram](http://x/y.png) see [docs](http://x)"
    assert preprocess_markdown(text) == "Use 【pip】 and 【care】, _maybe_. diagram see docs"


def test_preprocess_markdown_marks_code_fences():
    out = preprocess_markdown("before\n```python\nprint(1)\n```\nafter")
    assert out == "before\n[code block]\npython\nprint(1)\n\n[end code block]\nafter"


def test_empty_card_has_fallback_text():
    card = FeishuCardRenderer().build_reasoning_card(None, None)
    assert card["config"] == {"wide_screen_mode": True}
    assert card["elements"] == [{"tag": "markdown", "content": "(empty response)"}]


def test_generating_card_is_orange_and_finished_card_is_green():
    renderer = FeishuCardRenderer()
    doing = card_text(renderer.build_reasoning_card(None, "part", None, 1500, False, True))
    done = card_text(renderer.build_reasoning_card(None, "all", None, 2500, False, False))

    assert "<font color='orange'>📝 Doing (1s)</font>" in doing
    assert "<font color='green'>📝 Done (2s)</font>" in done


def test_reasoning_block_shows_thinking_status_and_context():
    renderer = FeishuCardRenderer()
    card = renderer.build_reasoning_card(
        "weighing options", None, 4000, None, True, True, "glm-5", 87
    )
    tags = [e["tag"] for e in card["elements"]]
    assert tags[:3] == ["div", "markdown", "hr"]

    text = card_text(card)
    assert "<font color='blue'>glm-5</font>" in text
    assert "87% left" in text
    assert "💭 Thinking (4s)" in text

    finished = card_text(
        renderer.build_reasoning_card("weighing options", "ok", 4000, 900, False, False)
    )
    assert "💭 Thought for 4s" in finished


def test_markdown_card_wraps_text():
    card = FeishuCardRenderer().build_markdown_card("**hi**")
    assert card["elements"] == [{"tag": "markdown", "content": "【hi】"}]


def test_plain_text_renderer_layout():
    renderer = PlainTextRenderer()
    body = renderer.build_reasoning_card(
        "line one\nline two", "The answer", 2000, 1000, False, False, "glm-5", 40
    )
    assert body == (
        "glm-5 | 40% left | Done (1s)\n---\n"
        "[Thought (2s)]\n> line one\n> line two\n---\n"
        "The answer"
    )


def test_plain_text_renderer_placeholder_and_empty():
    renderer = PlainTextRenderer()
    assert renderer.build_reasoning_card(None, "", None, 0, False, True, "glm-5") == (
        "glm-5 | Doing (0ms)\n---\n..."
    )
    assert renderer.build_reasoning_card(None, None) == "(empty response)"
    assert renderer.build_markdown_card("**x**") == "**x**"
