"""Bridge service: wires config, storage, runner and chat platform together."""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable

from aiohttp import web

from flowbridge.commands import CommandHandler
from flowbridge.config import BridgeConfig
from flowbridge.connection import Backoff, ConnectionManager
from flowbridge.core.turn import TurnOptions, TurnOrchestrator
from flowbridge.core.turn.api import CardRendererPort, ChatPlatformPort
from flowbridge.models import VERSION
from flowbridge.platforms.feishu import (
    FeishuCardRenderer,
    FeishuClient,
    FeishuLongConnection,
    LarkEventSocket,
    create_app,
    start_event_server,
)
from flowbridge.platforms.feishu.longconn import Deliver, EventSocket
from flowbridge.platforms.xmpp import PlainTextRenderer, XMPPChatBot
from flowbridge.runners import IFlowRunner, Runner
from flowbridge.sessions import SessionStore
from flowbridge.settings import IFlowSettings

log = logging.getLogger("service")


class CLINotAvailable(RuntimeError):
    def __init__(self, command: str, detail: str = ""):
        self.command = command
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.detail:
            return f"iFlow CLI not found ({self.command}): {self.detail}"
        return f"iFlow CLI not found ({self.command})"


class BridgeService:
    def __init__(
        self,
        config: BridgeConfig,
        *,
        runner: Runner | None = None,
        socket_factory: Callable[[Deliver], EventSocket] | None = None,
    ):
        self.config = config
        self.sessions = SessionStore(config.sessions.dir, config.sessions.max_history)
        self.settings = IFlowSettings(config.settings_path)
        self.runner = runner or IFlowRunner(config.iflow, config.transcript_dir)

        self.platform: ChatPlatformPort
        self.renderer: CardRendererPort
        self._feishu: FeishuClient | None = None
        self._xmpp: XMPPChatBot | None = None
        self._feishu_ws: FeishuLongConnection | None = None
        self._http_runner: web.AppRunner | None = None
        self.connection: ConnectionManager | None = None

        if config.platform == "xmpp":
            self._xmpp = XMPPChatBot(config.xmpp)
            self.platform = self._xmpp
            self.renderer = PlainTextRenderer()
        else:
            self._feishu = FeishuClient(config.feishu)
            self.platform = self._feishu
            self.renderer = FeishuCardRenderer()

        self.commands = CommandHandler(
            platform=self.platform,
            renderer=self.renderer,
            sessions=self.sessions,
            settings=self.settings,
        )
        self.orchestrator = TurnOrchestrator(
            platform=self.platform,
            renderer=self.renderer,
            runner=self.runner,
            sessions=self.sessions,
            settings=self.settings,
            options=TurnOptions(
                max_tokens=config.max_tokens,
                model_max_tokens=config.model_max_tokens,
                log_dir=config.log_dir,
                context_messages=config.sessions.context_messages,
                max_attempts=config.iflow.max_attempts,
            ),
            commands=self.commands,
        )
        if self._xmpp is not None:
            self._xmpp.dispatch = self.orchestrator.handle_event
        if self._feishu is not None and config.feishu.long_connection:
            if socket_factory is None:
                socket_factory = partial(LarkEventSocket, config.feishu)
            self._feishu_ws = FeishuLongConnection(
                self.orchestrator.handle_event, socket_factory
            )

    async def check_cli(self) -> None:
        check = getattr(self.runner, "check_available", None)
        if check is None:
            return
        ok, detail = await check()
        if not ok:
            log.error("iFlow CLI not found")
            raise CLINotAvailable(self.config.iflow.command, detail)
        log.info("iFlow CLI available: %s", detail or "ok")

    async def start(self) -> None:
        log.info("Starting flowbridge v%s (%s)...", VERSION, self.config.platform)
        await self.check_cli()

        if self._feishu is not None:
            server = self.config.server
            app = create_app(
                self.orchestrator.handle_event,
                event_path=server.event_path if server.webhook else None,
            )
            self._http_runner, _, _ = await start_event_server(
                app, host=server.host, port=server.port
            )

        if self._feishu_ws is not None:
            self.connection = ConnectionManager(
                self._feishu_ws.open_connection, backoff=Backoff(), name="feishu"
            )
            self._feishu_ws.connection = self.connection
            await self.connection.start()

        if self._xmpp is not None:
            self.connection = ConnectionManager(
                self._xmpp.open_connection, backoff=Backoff(), name="xmpp"
            )
            self._xmpp.connection = self.connection
            await self.connection.start()

        log.info("Service started")

    async def stop(self) -> None:
        if self._xmpp is not None:
            await self._xmpp.shutdown()
        if self._feishu_ws is not None:
            await self._feishu_ws.shutdown()
        if self.connection is not None:
            self.connection.stop()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
            self._http_runner = None
        if self._feishu is not None:
            await self._feishu.close()
        log.info("Service stopped")

    async def health_check(self) -> dict:
        result: dict = {"iflow": False, "config": True, "sessions": True}

        check = getattr(self.runner, "check_available", None)
        if check is not None:
            ok, _ = await check()
            result["iflow"] = ok
            if not ok:
                log.warning("Health check: iFlow CLI not available")

        try:
            result["sessionCount"] = self.sessions.count()
        except Exception:
            log.warning("Health check: session store error", exc_info=True)
            result["sessions"] = False

        if self.config.platform == "feishu":
            result["config"] = bool(self.config.feishu.app_id and self.config.feishu.app_secret)
        else:
            result["config"] = bool(self.config.xmpp.jid and self.config.xmpp.password)
        return result
