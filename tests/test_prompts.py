import json

from flowbridge.core.turn import InboundMessage
from flowbridge.core.turn.prompts import (
    apply_search_hint,
    build_prompt_with_context,
    needs_search,
)
from flowbridge.models import SEARCH_PREFIX, max_tokens_for
from flowbridge.sessions import ChatMessage


def test_search_keywords():
    assert needs_search("最新的新闻")
    assert needs_search("what happened in 2025")
    assert not needs_search("explain recursion")
    assert apply_search_hint("股价") == SEARCH_PREFIX + "股价"
    assert apply_search_hint("hello") == "hello"


def test_prompt_without_history_is_unchanged():
    assert build_prompt_with_context([], "hi") == ("hi", 0)


def test_prompt_replays_only_the_last_messages():
    history = [ChatMessage("user" if i % 2 == 0 else "assistant", f"m{i}", 0) for i in range(14)]
    prompt, count = build_prompt_with_context(history, "next", limit=10)

    assert count == 10
    assert "User: m2" not in prompt
    assert "User: m4" in prompt
    assert "Assistant: m13" in prompt
    assert prompt.endswith(
        "\nThe user's new question is:\nUser: next\n"
        "\nPlease answer the new question based on the conversation above."
    )


def test_inbound_text_decoding():
    def inbound(raw):
        return InboundMessage("c", "m", "text", raw)

    assert inbound(json.dumps({"text": "hello"})).text() == "hello"
    assert inbound("not json").text() == "not json"
    assert inbound('{"other": 1}').text() == '{"other": 1}'


def test_model_context_sizes():
    assert max_tokens_for("claude-3") == 200000
    assert max_tokens_for("unknown-model") == 128000
    assert max_tokens_for(None, {"x": 5}, 1000) == 1000


def test_settings_round_trip(settings):
    assert settings.model_name() == "glm-5"
    assert settings.mode() == "default"

    settings.path.parent.mkdir(parents=True)
    settings.path.write_text(json.dumps({"modelName": "qwen3-coder-plus"}))
    assert settings.model_name() == "qwen3-coder-plus"

    settings.set_mode("smart")
    assert settings.mode() == "smart"
    assert json.loads(settings.path.read_text())["modelName"] == "qwen3-coder-plus"

    settings.path.write_text("{broken")
    assert settings.model_name() == "glm-5"
