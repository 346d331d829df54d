"""Scrape the CLI's stdout into reasoning, answer and context-left.

Extraction is a pure function of the accumulated output, re-run on every
chunk and once more after the process exits.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("extractor")

EMPTY_RESPONSE = "(empty response)"
UNEXTRACTABLE_RESPONSE = "(unable to extract response)"

EXEC_INFO_START = "<Execution Info>"
EXEC_INFO_END = "</Execution Info>"
WARNING_GLYPH = "⚠️"

THINK_PAIRS = {"<think>": "</think>", "<tool_call>": "</tool_call>"}
THINK_OPENERS = tuple(THINK_PAIRS)

LOG_TAIL_CHARS = 5000
# UTF-8 needs at most 4 bytes per character.
LOG_TAIL_BYTES = LOG_TAIL_CHARS * 4

_EXEC_INFO_RE = re.compile(
    re.escape(EXEC_INFO_START) + r"([\s\S]*?)" + re.escape(EXEC_INFO_END)
)
_LOG_TOKENS_RE = re.compile(
    r"(\d+)\s+tokens\s+from\s+the\s+input\s+messages\s+and\s+(\d+)\s+tokens\s+for\s+the\s+completion"
)
_LOG_MAX_CONTEXT_RE = re.compile(r"maximum\s+context\s+length\s+of\s+(\d+)\s+tokens")


@dataclass(frozen=True)
class ContextLeft:
    percent: int
    source: str  # "execution-info" | "log"


@dataclass(frozen=True)
class Extraction:
    reasoning: str
    answer: str
    context: ContextLeft | None = None

    @property
    def percent(self) -> int | None:
        return self.context.percent if self.context else None


def percent_left(max_tokens: int, used: int) -> int:
    """Remaining share of the context window, rounded half up, within [0, 100]."""
    if max_tokens <= 0:
        return 0
    remaining = max(0, max_tokens - used)
    percent = math.floor(remaining * 100 / max_tokens + 0.5)
    return max(0, min(100, percent))


def estimate_percent_left(max_tokens: int, history_chars: int, output_chars: int) -> int:
    """Length heuristic used when the CLI reports nothing: ~4 chars per token."""
    if max_tokens <= 0:
        return 0
    estimated = math.ceil((history_chars + output_chars + 500) / 4)
    percent = math.floor((max_tokens - estimated) * 100 / max_tokens + 0.5)
    return max(0, min(100, percent))


def _usage_from_execution_info(text: str, max_tokens: int) -> ContextLeft | None:
    match = _EXEC_INFO_RE.search(text)
    if not match:
        return None
    try:
        info = json.loads(match.group(1))
    except ValueError:
        return None
    if not isinstance(info, dict):
        return None
    usage = info.get("tokenUsage")
    if not isinstance(usage, dict):
        return None
    total = usage.get("total")
    if not isinstance(total, (int, float)) or total <= 0:
        return None
    return ContextLeft(percent_left(max_tokens, int(total)), "execution-info")


def _latest_console_log(log_dir: Path) -> Path | None:
    candidates = [p for p in log_dir.glob("console-*.log") if p.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def read_log_tail(path: Path) -> str:
    """Last LOG_TAIL_CHARS characters of `path`, without reading the whole file."""
    with open(path, "rb") as f:
        size = f.seek(0, os.SEEK_END)
        f.seek(max(0, size - LOG_TAIL_BYTES))
        data = f.read()
    return data.decode("utf-8", errors="replace")[-LOG_TAIL_CHARS:]


def usage_from_logs(log_dir: Path, max_tokens: int) -> ContextLeft | None:
    """Look for a token-count sentence in the newest CLI console log.

    Blocking file IO; async callers run it in a worker thread.
    """
    try:
        latest = _latest_console_log(Path(log_dir))
        if latest is None:
            return None
        tail = read_log_tail(latest)
    except OSError as e:
        log.warning("Failed to read iFlow logs: %s", e)
        return None

    match = _LOG_TOKENS_RE.search(tail)
    if match:
        input_tokens, output_tokens = int(match.group(1)), int(match.group(2))
        used = input_tokens + output_tokens
        log.info(
            "Token usage from log: input=%d output=%d total=%d/%d",
            input_tokens,
            output_tokens,
            used,
            max_tokens,
        )
        return ContextLeft(percent_left(max_tokens, used), "log")

    if _LOG_MAX_CONTEXT_RE.search(tail):
        return ContextLeft(0, "log")
    return None


def clean_output(text: str) -> str:
    """Drop the execution-info trailer and anything after a warning glyph."""
    cleaned = text
    for marker in (EXEC_INFO_START, WARNING_GLYPH):
        idx = cleaned.find(marker)
        if idx >= 0:
            cleaned = cleaned[:idx]
    return cleaned.strip()


def _find_first(text: str, markers: tuple[str, ...], start: int = 0) -> tuple[int, str]:
    best = (-1, "")
    for marker in markers:
        idx = text.find(marker, start)
        if idx >= 0 and (best[0] < 0 or idx < best[0]):
            best = (idx, marker)
    return best


def _trim_partial_marker(text: str, markers: tuple[str, ...]) -> str:
    """Drop a trailing fragment that could still grow into one of `markers`."""
    longest = 0
    for marker in markers:
        for k in range(len(marker) - 1, longest, -1):
            if text.endswith(marker[:k]):
                longest = k
                break
    return text[:-longest] if longest else text


def split_thinking(text: str, *, streaming: bool = False) -> tuple[str, str]:
    """Split display text into (reasoning, answer).

    A region opened by `<think>` only ends at `</think>`, and one opened by
    `<tool_call>` only at `</tool_call>`. With `streaming`, a marker that has
    only partly arrived is held back so it never shows up in the output for
    one update and vanishes on the next.
    """
    open_idx, opener = _find_first(text, THINK_OPENERS)
    if open_idx < 0:
        if streaming:
            text = _trim_partial_marker(text, THINK_OPENERS)
        return "", text.strip()

    body_start = open_idx + len(opener)
    closer = THINK_PAIRS[opener]
    close_idx = text.find(closer, body_start)
    if close_idx < 0:
        # Still thinking: everything after the opener is reasoning so far.
        body = text[body_start:]
        if streaming:
            body = _trim_partial_marker(body, (closer,))
        return body.strip(), text[:open_idx].strip()

    reasoning = text[body_start:close_idx].strip()
    answer = (text[:open_idx] + text[close_idx + len(closer) :]).strip()
    return reasoning, answer


def extract_response(
    raw: object,
    *,
    max_tokens: int,
    log_dir: Path | None = None,
    streaming: bool = False,
) -> Extraction:
    """Split `raw` and find the context left.

    The console log under `log_dir` is consulted only when the output carries
    no execution info; pass None to skip it.
    """
    if not isinstance(raw, str) or not raw:
        return Extraction("", EMPTY_RESPONSE, None)

    context = _usage_from_execution_info(raw, max_tokens)
    if context is None and log_dir is not None:
        context = usage_from_logs(log_dir, max_tokens)

    reasoning, answer = split_thinking(clean_output(raw), streaming=streaming)
    return Extraction(reasoning, answer, context)


class ThinkingDetector:
    """Tracks the thinking phase over a growing output accumulator."""

    def __init__(self) -> None:
        self.opened = False
        self.closed = False
        self._open_at = -1
        self._closer = ""

    @property
    def active(self) -> bool:
        return self.opened and not self.closed

    def feed(self, accumulated: str) -> str | None:
        """Return "opened" or "closed" when the phase changes, else None."""
        if not self.opened:
            idx, opener = _find_first(accumulated, THINK_OPENERS)
            if idx < 0:
                return None
            self.opened = True
            self._open_at = idx + len(opener)
            self._closer = THINK_PAIRS[opener]
            if accumulated.find(self._closer, self._open_at) >= 0:
                self.closed = True
            return "opened"

        if not self.closed:
            if accumulated.find(self._closer, self._open_at) >= 0:
                self.closed = True
                return "closed"
        return None
