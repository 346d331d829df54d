"""Prompt shaping: search hint and replayed conversation history."""

from __future__ import annotations

from typing import Sequence

from flowbridge.models import CONTEXT_MESSAGES, SEARCH_KEYWORDS, SEARCH_PREFIX
from flowbridge.sessions import ChatMessage


def needs_search(text: str) -> bool:
    return any(keyword in text for keyword in SEARCH_KEYWORDS)


def apply_search_hint(text: str) -> str:
    if needs_search(text):
        return f"{SEARCH_PREFIX}{text}"
    return text


def build_prompt_with_context(
    history: Sequence[ChatMessage],
    text: str,
    limit: int = CONTEXT_MESSAGES,
) -> tuple[str, int]:
    """Prepend the last `limit` messages; returns (prompt, messages replayed)."""
    if not history:
        return text, 0

    recent = list(history)[-limit:] if limit > 0 else []
    if not recent:
        return text, 0

    parts = ["Here is the previous conversation:\n"]
    for msg in recent:
        if msg.role == "user":
            parts.append(f"User: {msg.content}")
        elif msg.role == "assistant":
            parts.append(f"Assistant: {msg.content}")
    parts.append("\nThe user's new question is:")
    parts.append(f"User: {text}")
    parts.append("\nPlease answer the new question based on the conversation above.")
    return "\n".join(parts), len(recent)
