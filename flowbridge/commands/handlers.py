"""Chat commands handled by the bridge itself instead of the CLI."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, cast

from flowbridge.core.turn.api import CardRendererPort, ChatPlatformPort
from flowbridge.models import VALID_MODES
from flowbridge.sessions import SessionStore
from flowbridge.settings import IFlowSettings

log = logging.getLogger("commands")

HELP_TEXT = """🤖 **flowbridge commands**

**Conversation:**
/clear - clear this conversation
/status - show conversation status
/help - show this help

**Mode:**
/mode - show the current mode
/mode <default|yolo|plan|smart> - switch mode

**Tip:**
Send any other message to talk to the assistant."""

MODE_DESCRIPTIONS = {
    "default": "manual confirmation",
    "yolo": "run actions automatically",
    "plan": "plan only, do not execute",
    "smart": "smart mode",
}


def command(name: str, *aliases: str):
    """Decorator to register a command handler.

    Args:
        name: Primary command word (e.g., "/clear")
        *aliases: Additional words that trigger this command
    """

    def decorator(
        func: Callable[..., Awaitable[bool]],
    ) -> Callable[..., Awaitable[bool]]:
        setattr(func, "_command_name", name)
        setattr(func, "_command_aliases", aliases)
        return func

    return decorator


class CommandHandler:
    """Handles chat commands for one bridge.

    Commands are registered via the @command decorator on methods.
    The handler auto-discovers all decorated methods on init.
    """

    def __init__(
        self,
        *,
        platform: ChatPlatformPort,
        renderer: CardRendererPort,
        sessions: SessionStore,
        settings: IFlowSettings,
    ):
        self.platform = platform
        self.renderer = renderer
        self.sessions = sessions
        self.settings = settings
        self._commands: dict[str, Callable[..., Awaitable[bool]]] = {}
        self._discover_commands()

    def _discover_commands(self) -> None:
        """Find all @command decorated methods and register them."""
        for name in dir(self):
            method = getattr(self, name)
            if callable(method) and hasattr(method, "_command_name"):
                m = cast(Any, method)
                handler = cast(Callable[..., Awaitable[bool]], method)
                self._commands[cast(str, m._command_name)] = handler
                for alias in cast(tuple[str, ...], m._command_aliases):
                    self._commands[alias] = handler

    async def handle(self, conversation_key: str, text: str) -> bool:
        """Handle a command. Returns True if the text was a command."""
        words = text.strip().split()
        if not words:
            return False
        handler = self._commands.get(words[0].lower())
        if handler is None:
            return False
        return await handler(conversation_key, words[1:])

    async def _reply(self, conversation_key: str, text: str) -> None:
        await self.platform.send_message(
            conversation_key, self.renderer.build_markdown_card(text)
        )

    @command("/help", "帮助")
    async def help(self, key: str, _args: list[str]) -> bool:
        await self._reply(key, HELP_TEXT)
        return True

    @command("/clear", "清空")
    async def clear(self, key: str, _args: list[str]) -> bool:
        self.sessions.clear(key)
        log.info("Cleared conversation %s", key)
        await self.platform.send_message(
            key,
            self.renderer.build_reasoning_card(
                "",
                "✅ Conversation cleared\n\nContext has been reset; you can start a new conversation.",
            ),
        )
        return True

    @command("/mode")
    async def mode(self, key: str, args: list[str]) -> bool:
        current = self.settings.mode()
        if not args:
            lines = [f"🎛️ Current mode: **{current}**", "", "Available modes:"]
            lines += [f"• {name} - {MODE_DESCRIPTIONS[name]}" for name in VALID_MODES]
            lines += ["", "💡 Switch mode: /mode <name>"]
            await self._reply(key, "\n".join(lines))
            return True

        new_mode = args[0]
        if new_mode not in VALID_MODES:
            await self._reply(
                key,
                f'❌ Invalid mode "{new_mode}"\n\nAvailable: {", ".join(VALID_MODES)}',
            )
            return True

        try:
            self.settings.set_mode(new_mode)
        except (OSError, ValueError) as e:
            log.warning("Switching mode failed: %s", e)
            await self._reply(key, f"❌ Switching mode failed: {e}")
            return True

        await self._reply(
            key, f"✅ **Mode switched to:** {new_mode}\n\nTakes effect from the next message."
        )
        return True

    @command("/status")
    async def status(self, key: str, _args: list[str]) -> bool:
        session = self.sessions.get(key)
        text = "\n".join(
            [
                "📊 **Conversation status**",
                "",
                f"**Model:** {self.settings.model_name()}",
                f"**Mode:** {self.settings.mode()}",
                f"**History:** {len(session.messages)} messages",
                f"**Conversation ID:** {key[-8:]}",
                "",
                "💡 Tips:",
                f"• The last {self.sessions.max_history} messages are kept",
                "• Start over: /clear",
            ]
        )
        await self._reply(key, text)
        return True
