"""Turn orchestrator.

One inbound text message becomes one turn:
    admission -> placeholder -> streamed CLI run -> final edit -> history

At most one turn runs per conversation key; a second message for a busy
conversation is dropped with a warning.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Protocol

from flowbridge.core.turn.api import (
    CardRendererPort,
    ChatPlatformPort,
    InboundMessage,
    TurnOptions,
)
from flowbridge.core.turn.extractor import (
    UNEXTRACTABLE_RESPONSE,
    ThinkingDetector,
    estimate_percent_left,
    extract_response,
    usage_from_logs,
)
from flowbridge.core.turn.prompts import (
    apply_search_hint,
    build_prompt_with_context,
    needs_search,
)
from flowbridge.core.turn.updater import CardUpdater
from flowbridge.runners.ports import Runner
from flowbridge.sessions import SessionStore
from flowbridge.settings import IFlowSettings

log = logging.getLogger("turn")


class CommandPort(Protocol):
    async def handle(self, conversation_key: str, text: str) -> bool: ...


def _preview(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class TurnOrchestrator:
    def __init__(
        self,
        *,
        platform: ChatPlatformPort,
        renderer: CardRendererPort,
        runner: Runner,
        sessions: SessionStore,
        settings: IFlowSettings,
        options: TurnOptions | None = None,
        commands: CommandPort | None = None,
    ):
        self.platform = platform
        self.renderer = renderer
        self.runner = runner
        self.sessions = sessions
        self.settings = settings
        self.options = options or TurnOptions()
        self.commands = commands

        self.in_flight: set[str] = set()
        self._background: set[asyncio.Task] = set()

    # -----------------
    # Inbound boundary
    # -----------------

    def _spawn_best_effort(self, coro: Awaitable[Any], context: str) -> asyncio.Task:
        async def runner() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("%s failed: %s", context, e)

        task = asyncio.create_task(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def handle_event(self, inbound: InboundMessage) -> None:
        key = inbound.conversation_key
        log.info("Message received - chat %s, type %s", key, inbound.message_type)

        if inbound.message_id:
            self._spawn_best_effort(
                self.platform.mark_read(inbound.message_id), "Mark read"
            )

        if inbound.message_type != "text":
            log.info("Skipping non-text message: %s", inbound.message_type)
            return

        text = inbound.text()
        log.info("User input: %s", _preview(text))

        # No await between the check and the add.
        if key in self.in_flight:
            log.warning("Already processing a message for %s; skipping duplicate", key)
            return
        self.in_flight.add(key)

        try:
            await self.process_message(key, text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Processing message failed (%s)", key)
            await self._send_error(key, f"Processing failed: {e}")
        finally:
            self.in_flight.discard(key)

    async def _send_error(self, key: str, text: str) -> None:
        card = self.renderer.build_reasoning_card(None, text, None, None, False, False)
        try:
            await self.platform.send_message(key, card)
        except Exception as e:
            log.error("Failed to send error message to %s: %s", key, e)

    # -----------------
    # Turn
    # -----------------

    async def process_message(self, key: str, text: str) -> str | None:
        """Run one turn; returns the stored answer, or None if none was stored."""
        trimmed = text.strip()

        if self.commands is not None and await self.commands.handle(key, trimmed):
            log.info("Command handled")
            return None

        prompt_text = trimmed
        if needs_search(trimmed):
            log.info("Search intent detected")
            prompt_text = apply_search_hint(trimmed)

        model_name = self.settings.model_name()
        mode = self.settings.mode()
        log.info("Using model %s (mode %s)", model_name, mode)

        # Raises ChatDeliveryError; no subprocess is started without a placeholder.
        placeholder = self.renderer.build_reasoning_card(
            None, "", None, 0, False, True, model_name
        )
        message_id = await self.platform.send_message(key, placeholder)

        updater: CardUpdater | None = None
        try:
            history = self.sessions.get(key).messages
            prompt, history_count = build_prompt_with_context(
                history, prompt_text, self.options.context_messages
            )
            if history_count:
                log.info("Attaching %d history messages", history_count)

            updater = CardUpdater(
                message_id,
                self.platform,
                self.renderer,
                model_name=model_name,
                initial_percent=self._estimate_percent(key, 0, model_name),
                min_interval_s=self.options.min_interval_s,
                tick_interval_s=self.options.tick_interval_s,
            )
            log.info("Initial context left: %s%%", updater.state.percent)

            answer = await self._stream_turn(key, prompt, updater, model_name, mode)
        except asyncio.CancelledError:
            if updater is not None:
                updater.complete()
            raise
        except Exception as e:
            log.error("iFlow call failed for %s: %s", key, e)
            if updater is not None:
                updater.complete()
                await updater.flush()
            await self._edit_error(message_id, f"Call failed: {e}", model_name)
            return None

        self.sessions.add_message(key, "user", trimmed)
        self.sessions.add_message(key, "assistant", answer)
        log.info("Message processing finished for %s", key)
        return answer

    def _estimate_percent(self, key: str, output_chars: int, model_name: str) -> int:
        history_chars = self.sessions.get(key).history_length()
        return estimate_percent_left(
            self.options.max_tokens_for(model_name), history_chars, output_chars
        )

    async def _stream_turn(
        self,
        key: str,
        prompt: str,
        updater: CardUpdater,
        model_name: str,
        mode: str,
    ) -> str:
        max_tokens = self.options.max_tokens_for(model_name)
        detector = ThinkingDetector()

        def sync_thinking() -> None:
            if detector.opened and updater.state.thinking_started_at is None:
                updater.set_thinking_start()
                updater.set_thinking(True)
                log.info("Thinking phase started")
            if detector.closed and updater.state.thinking_ended_at is None:
                updater.set_thinking_end()
                updater.set_thinking(False)
                log.info("Thinking phase finished")

        def on_chunk(_chunk: str, accumulated: str) -> None:
            if updater.completed:
                return
            detector.feed(accumulated)
            sync_thinking()

            # The newest console log still belongs to the previous turn here.
            extracted = extract_response(
                accumulated, max_tokens=max_tokens, streaming=True
            )
            updater.set_reasoning(extracted.reasoning)
            updater.set_answer(extracted.answer)
            if extracted.percent is not None:
                updater.set_percent(extracted.percent)
            else:
                updater.set_percent(
                    self._estimate_percent(key, len(accumulated), model_name)
                )
            updater.update()

        updater.update(force=True)
        updater.start_ticker()
        try:
            result = await self.runner.execute_with_retry(
                prompt,
                on_chunk,
                mode=mode,
                max_attempts=self.options.max_attempts,
            )
        except BaseException:
            updater.complete()
            raise

        updater.end_stream()
        final = extract_response(result.raw_output, max_tokens=max_tokens)
        if final.context is None and self.options.log_dir is not None:
            context = await asyncio.to_thread(
                usage_from_logs, self.options.log_dir, max_tokens
            )
            final = replace(final, context=context)
        answer = final.answer or UNEXTRACTABLE_RESPONSE
        if updater.state.thinking:
            updater.set_thinking_end()
            updater.set_thinking(False)
        updater.set_reasoning(final.reasoning)
        updater.set_answer(answer)
        if final.percent is not None:
            updater.set_percent(final.percent)
        updater.update(force=True)

        await asyncio.sleep(self.options.settle_delay_s)

        thinking_ms = updater.thinking_ms()
        answer_ms = updater.answer_ms()
        updater.complete()
        await updater.flush()
        log.info("Done - thinking %sms, answer %sms", thinking_ms or 0, answer_ms)

        card = self.renderer.build_reasoning_card(
            final.reasoning or None,
            answer,
            thinking_ms,
            answer_ms,
            False,
            False,
            model_name,
            updater.state.percent,
        )
        try:
            ok = await self.platform.update_message(updater.message_id, card)
        except Exception as e:
            log.warning("Final card update failed: %s", e)
        else:
            if not ok:
                log.warning("Final card update failed for %s", updater.message_id)
        return answer

    async def _edit_error(self, message_id: str, text: str, model_name: str) -> None:
        card = self.renderer.build_reasoning_card(
            None, text, None, None, False, False, model_name
        )
        try:
            await self.platform.update_message(message_id, card)
        except Exception as e:
            log.error("Failed to update error card: %s", e)

    async def drain(self) -> None:
        """Wait for best-effort background calls (read receipts)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
