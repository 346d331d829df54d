"""Public API for the turn pipeline.

This module is the stable boundary between:
- chat platform adapters (Feishu, XMPP)
- the turn orchestrator and its progressive update controller

Adapters implement these protocols; the orchestrator depends only on them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from flowbridge.models import (
    CARD_UPDATE_DELAY_S,
    CARD_UPDATE_INTERVAL_S,
    CONTEXT_MESSAGES,
    DEFAULT_MAX_TOKENS,
    TIMER_UPDATE_INTERVAL_S,
    max_tokens_for,
)


class ChatDeliveryError(RuntimeError):
    """A message could not be delivered to the chat platform."""

    def __init__(self, conversation_key: str, reason: str):
        super().__init__(reason)
        self.conversation_key = conversation_key
        self.reason = reason

    def __str__(self) -> str:
        return f"Failed to send message to {self.conversation_key}: {self.reason}"


@dataclass(frozen=True)
class InboundMessage:
    conversation_key: str
    message_id: str
    message_type: str
    raw_content: str

    def text(self) -> str:
        """Decode the text body (`{"text": ...}` JSON or plain text)."""
        raw = self.raw_content or ""
        try:
            payload = json.loads(raw)
        except ValueError:
            return raw
        if isinstance(payload, dict):
            return str(payload.get("text") or raw)
        return raw


class ChatPlatformPort(Protocol):
    async def send_message(self, conversation_key: str, payload: Any) -> str: ...

    async def update_message(self, message_id: str, payload: Any) -> bool: ...

    async def mark_read(self, message_id: str) -> bool: ...


class CardRendererPort(Protocol):
    def build_reasoning_card(
        self,
        reasoning: str | None,
        answer: str | None,
        thinking_ms: int | None,
        answer_ms: int | None,
        is_thinking: bool,
        is_generating: bool,
        model_name: str | None = None,
        percent: int | None = None,
    ) -> Any: ...

    def build_markdown_card(self, text: str) -> Any: ...


@dataclass(frozen=True)
class TurnOptions:
    max_tokens: int = DEFAULT_MAX_TOKENS
    model_max_tokens: dict[str, int] | None = None
    log_dir: Path | None = None
    context_messages: int = CONTEXT_MESSAGES
    min_interval_s: float = CARD_UPDATE_INTERVAL_S
    tick_interval_s: float = TIMER_UPDATE_INTERVAL_S
    settle_delay_s: float = CARD_UPDATE_DELAY_S
    max_attempts: int | None = None

    def max_tokens_for(self, model_name: str | None) -> int:
        return max_tokens_for(model_name, self.model_max_tokens, self.max_tokens)
