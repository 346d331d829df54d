"""Plain-text rendering for XMPP chat clients."""

from __future__ import annotations

from flowbridge.core.turn.extractor import EMPTY_RESPONSE
from flowbridge.utils import format_duration


def _quote(text: str) -> str:
    return "\n".join(f"> {line}" if line else ">" for line in text.splitlines())


class PlainTextRenderer:
    """Renders turn state as a message body; corrections replace it in place."""

    def build_markdown_card(self, text: str) -> str:
        return text

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
    ) -> str:
        header: list[str] = []
        if model_name:
            header.append(model_name)
        if percent is not None:
            header.append(f"{percent}% left")

        blocks: list[str] = []
        if reasoning and reasoning.strip():
            status = "Thinking" if is_thinking else "Thought"
            if thinking_ms is not None:
                status += f" ({format_duration(thinking_ms)})"
            blocks.append(f"[{status}]\n{_quote(reasoning.strip())}")

        if answer is not None or answer_ms is not None or is_generating:
            state = "Doing" if is_generating else "Done"
            if answer_ms is not None:
                state += f" ({format_duration(answer_ms)})"
            header.append(state)
            if answer and answer.strip():
                blocks.append(answer.strip())
            elif is_generating:
                blocks.append("...")

        if not blocks and not header:
            return EMPTY_RESPONSE

        parts = []
        if header:
            parts.append(" | ".join(header))
        parts.extend(blocks)
        return "\n---\n".join(parts) if len(parts) > 1 else parts[0]
