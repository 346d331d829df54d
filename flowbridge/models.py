"""Model table and timing constants shared across the bridge."""

from __future__ import annotations

import os

VERSION = "1.0.0"
SERVICE_NAME = "flowbridge"

DEFAULT_MODEL = os.getenv("FLOWBRIDGE_DEFAULT_MODEL", "glm-5")
DEFAULT_MAX_TOKENS = 128000

MODEL_MAX_TOKENS = {
    "qwen3-coder-plus": 128000,
    "glm-5": 128000,
    "gpt-4": 128000,
    "gpt-4-turbo": 128000,
    "gpt-3.5-turbo": 16384,
    "claude-3": 200000,
    "claude-3-opus": 200000,
    "claude-3-sonnet": 200000,
    "claude-3-haiku": 200000,
    "llama-3": 8192,
    "llama-3-70b": 8192,
    "mixtral": 32768,
    "mistral-large": 32768,
}

# Card edits and the elapsed-time ticker.
CARD_UPDATE_INTERVAL_S = 0.3
TIMER_UPDATE_INTERVAL_S = 0.5
CARD_UPDATE_DELAY_S = 0.1

RECONNECT_MAX_ATTEMPTS = 10
RECONNECT_BASE_DELAY_MS = 1000
RECONNECT_MAX_DELAY_MS = 30000

VALID_MODES = ("default", "yolo", "plan", "smart")


def max_tokens_for(
    model_name: str | None,
    overrides: dict[str, int] | None = None,
    default: int = DEFAULT_MAX_TOKENS,
) -> int:
    """Return the context window size for a model name."""
    table = overrides if overrides is not None else MODEL_MAX_TOKENS
    if model_name and model_name in table:
        return int(table[model_name])
    return int(default or DEFAULT_MAX_TOKENS)

# Messages containing any of these get a web-search instruction prefix.
SEARCH_KEYWORDS = (
    "搜索",
    "查找",
    "查询",
    "最新",
    "新闻",
    "天气",
    "股价",
    "汇率",
    "今天",
    "明天",
    "本周",
    "本月",
    "今年",
    "2024",
    "2025",
    "2026",
    "2027",
    "2028",
)
SEARCH_PREFIX = "Please use web search to answer the following question: "

# Number of stored messages replayed into the prompt.
CONTEXT_MESSAGES = 10
