"""Progressive update controller.

Owns one turn's mutable display state and pushes throttled edits of the
placeholder message. A ticker refreshes elapsed times while the CLI is quiet.
Once `complete()` is called no further edit is ever issued.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from flowbridge.core.turn.api import CardRendererPort, ChatPlatformPort
from flowbridge.models import CARD_UPDATE_INTERVAL_S, TIMER_UPDATE_INTERVAL_S

log = logging.getLogger("updater")


@dataclass
class TurnState:
    started_at: float
    thinking_started_at: float | None = None
    thinking_ended_at: float | None = None
    reasoning: str = ""
    answer: str = ""
    percent: int | None = None
    thinking: bool = False
    stream_ended_at: float | None = None
    completed: bool = False

    @property
    def stream_ended(self) -> bool:
        return self.stream_ended_at is not None


def _ms(seconds: float) -> int:
    return max(0, int(round(seconds * 1000)))


class CardUpdater:
    def __init__(
        self,
        message_id: str | None,
        platform: ChatPlatformPort,
        renderer: CardRendererPort,
        *,
        model_name: str | None = None,
        initial_percent: int | None = None,
        min_interval_s: float = CARD_UPDATE_INTERVAL_S,
        tick_interval_s: float = TIMER_UPDATE_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.message_id = message_id
        self._platform = platform
        self._renderer = renderer
        self.model_name = model_name
        self.min_interval_s = min_interval_s
        self.tick_interval_s = tick_interval_s
        self._clock = clock

        self.state = TurnState(started_at=clock(), percent=initial_percent)
        self._last_push: float | None = None
        self._ticker: asyncio.Task | None = None
        self._pushes: set[asyncio.Task] = set()

    # -- setters ---------------------------------------------------------

    def set_reasoning(self, text: str) -> None:
        self.state.reasoning = text

    def set_answer(self, text: str) -> None:
        self.state.answer = text

    def set_percent(self, percent: int | None) -> None:
        self.state.percent = percent

    def set_thinking(self, thinking: bool) -> None:
        self.state.thinking = thinking

    def set_thinking_start(self, at: float | None = None) -> None:
        self.state.thinking_started_at = self._clock() if at is None else at

    def set_thinking_end(self, at: float | None = None) -> None:
        self.state.thinking_ended_at = self._clock() if at is None else at

    def end_stream(self, at: float | None = None) -> None:
        self.state.stream_ended_at = self._clock() if at is None else at

    @property
    def completed(self) -> bool:
        return self.state.completed

    # -- timings ---------------------------------------------------------

    def thinking_ms(self) -> int | None:
        s = self.state
        if s.thinking_started_at is None:
            return None
        end = s.thinking_ended_at if s.thinking_ended_at is not None else self._clock()
        return _ms(end - s.thinking_started_at)

    def answer_ms(self) -> int | None:
        s = self.state
        if s.thinking:
            return None
        begin = s.thinking_ended_at if s.thinking_ended_at is not None else s.started_at
        end = s.stream_ended_at if s.stream_ended_at is not None else self._clock()
        return _ms(end - begin)

    # -- pushing ---------------------------------------------------------

    def render(self) -> Any:
        s = self.state
        return self._renderer.build_reasoning_card(
            s.reasoning,
            s.answer,
            self.thinking_ms(),
            self.answer_ms(),
            s.thinking,
            not s.stream_ended,
            self.model_name,
            s.percent,
        )

    def update(self, force: bool = False) -> bool:
        """Push an edit if allowed; returns True when one was scheduled."""
        if self.state.completed or not self.message_id:
            return False

        now = self._clock()
        if (
            not force
            and self._last_push is not None
            and now - self._last_push < self.min_interval_s
        ):
            return False

        self._last_push = now
        payload = self.render()
        task = asyncio.create_task(self._push(payload))
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)
        return True

    async def _push(self, payload: Any) -> None:
        try:
            ok = await self._platform.update_message(self.message_id, payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Card update failed: %s", e)
            return
        if not ok:
            log.warning("Card update failed for %s", self.message_id)

    async def _tick(self) -> None:
        try:
            while not self.state.completed:
                await asyncio.sleep(self.tick_interval_s)
                if self.state.completed:
                    return
                self.update()
        except asyncio.CancelledError:
            return

    def start_ticker(self) -> None:
        if self._ticker and not self._ticker.done():
            return
        if self.state.completed:
            return
        self._ticker = asyncio.create_task(self._tick())

    def complete(self) -> None:
        self.state.completed = True
        ticker = self._ticker
        self._ticker = None
        if ticker and not ticker.done():
            ticker.cancel()

    async def flush(self) -> None:
        """Wait for edits already in flight."""
        if self._pushes:
            await asyncio.gather(*list(self._pushes), return_exceptions=True)
