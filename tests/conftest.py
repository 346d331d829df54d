from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from flowbridge.core.turn.api import ChatDeliveryError, TurnOptions
from flowbridge.platforms.feishu.cards import FeishuCardRenderer
from flowbridge.runners.base import RunResult
from flowbridge.sessions import SessionStore
from flowbridge.settings import IFlowSettings


class FakePlatform:
    """Records every outbound call; ids are m1, m2, ..."""

    def __init__(self, *, fail_send: bool = False, update_result: bool = True):
        self.fail_send = fail_send
        self.update_result = update_result
        self.sent: list[tuple[str, object]] = []
        self.updates: list[tuple[str, object]] = []
        self.read: list[str] = []

    async def send_message(self, conversation_key: str, payload) -> str:
        if self.fail_send:
            raise ChatDeliveryError(conversation_key, "boom")
        self.sent.append((conversation_key, payload))
        return f"m{len(self.sent)}"

    async def update_message(self, message_id: str, payload) -> bool:
        self.updates.append((message_id, payload))
        return self.update_result

    async def mark_read(self, message_id: str) -> bool:
        self.read.append(message_id)
        return True


class FakeRunner:
    """Feeds scripted chunks to the callback, optionally waiting on a gate."""

    def __init__(self, chunks: list[str] | None = None, *, error: Exception | None = None):
        self.chunks = chunks if chunks is not None else ["Hello", " world"]
        self.error = error
        self.prompts: list[str] = []
        self.modes: list[str] = []
        self.gate: asyncio.Event | None = None

    async def execute(self, prompt, on_chunk=None, *, mode="default", thinking=False):
        return await self.execute_with_retry(prompt, on_chunk, mode=mode)

    async def execute_with_retry(
        self, prompt, on_chunk=None, *, mode="default", thinking=False, max_attempts=None
    ):
        self.prompts.append(prompt)
        self.modes.append(mode)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        acc = ""
        for chunk in self.chunks:
            acc += chunk
            if on_chunk:
                on_chunk(chunk, acc)
            await asyncio.sleep(0)
        return RunResult(raw_output=acc)


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def renderer() -> FeishuCardRenderer:
    return FeishuCardRenderer()


@pytest.fixture
def sessions(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions", max_history=15)


@pytest.fixture
def settings(tmp_path: Path) -> IFlowSettings:
    return IFlowSettings(tmp_path / "iflow" / "settings.json")


@pytest.fixture
def fast_options() -> TurnOptions:
    return TurnOptions(min_interval_s=0.0, tick_interval_s=0.01, settle_delay_s=0.0)


def card_text(card: dict) -> str:
    """All visible text in a Feishu card, joined by newlines."""
    parts: list[str] = []
    for element in card.get("elements", []):
        if element.get("tag") == "markdown":
            parts.append(element["content"])
        elif element.get("tag") == "div":
            parts.append(element["text"]["content"])
    return "\n".join(parts)
