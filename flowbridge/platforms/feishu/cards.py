"""Feishu interactive card rendering."""

from __future__ import annotations

import re

from flowbridge.core.turn.extractor import EMPTY_RESPONSE
from flowbridge.utils import format_duration

_CODE_FENCE_RE = re.compile(r"```([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_EMPHASIS_RE = re.compile(r"\*(.*?)\*")
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")

_SEPARATOR = "  <font color='grey'>|</font>  "


def preprocess_markdown(content: str) -> str:
    """Rewrite markdown that Feishu cards do not render."""
    if not content:
        return content
    out = _CODE_FENCE_RE.sub(lambda m: f"[code block]\n{m.group(1)}\n[end code block]", content)
    out = _INLINE_CODE_RE.sub(r"【\1】", out)
    out = _BOLD_RE.sub(r"【\1】", out)
    out = _EMPHASIS_RE.sub(r"_\1_", out)
    out = _IMAGE_RE.sub(r"\1", out)
    out = _LINK_RE.sub(r"\1", out)
    return out


def _title_div(content: str) -> dict:
    return {
        "tag": "div",
        "text": {"content": content, "tag": "lark_md", "text_size": "small"},
    }


class FeishuCardRenderer:
    """Builds card payloads for the Feishu message API."""

    def build_markdown_card(self, text: str) -> dict:
        return {
            "config": {"wide_screen_mode": True},
            "elements": [{"tag": "markdown", "content": preprocess_markdown(text)}],
        }

    def build_reasoning_card(
        self,
        reasoning: str | None,
        answer: str | None,
        thinking_ms: int | None = None,
        answer_ms: int | None = None,
        is_thinking: bool = False,
        is_generating: bool = False,
        model_name: str | None = None,
        percent: int | None = None,
    ) -> dict:
        elements: list[dict] = []
        model_title = f"<font color='blue'>{model_name}</font>" if model_name else ""
        if model_title and percent is not None:
            model_title += f"{_SEPARATOR}<font color='grey'>{percent}% left</font>"

        if reasoning and reasoning.strip():
            status = ""
            if is_thinking:
                timing = f"({format_duration(thinking_ms)})" if thinking_ms is not None else ""
                status = f"💭 Thinking {timing}".rstrip()
            elif thinking_ms is not None:
                status = f"💭 Thought for {format_duration(thinking_ms)}"

            title = model_title
            if status:
                title += (_SEPARATOR if title else "") + status
            if title:
                elements.append(_title_div(title))
            elements.append(
                {"tag": "markdown", "content": preprocess_markdown(reasoning.strip())}
            )
            elements.append({"tag": "hr"})

        if answer is not None or answer_ms is not None or is_generating:
            label = "📝 Answer"
            if answer_ms is not None:
                state = "Doing" if is_generating else "Done"
                label = f"📝 {state} ({format_duration(answer_ms)})"
            color = "orange" if is_generating else "green"

            title = model_title
            title += (_SEPARATOR if title else "") + f"<font color='{color}'>{label}</font>"
            elements.append(_title_div(title))

            if answer and answer.strip():
                elements.append(
                    {"tag": "markdown", "content": preprocess_markdown(answer.strip())}
                )

        if not elements:
            elements = [{"tag": "markdown", "content": EMPTY_RESPONSE}]
        return {"config": {"wide_screen_mode": True}, "elements": elements}
