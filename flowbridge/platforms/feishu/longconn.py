"""Feishu long-connection event socket.

lark-oapi's ws client blocks its thread on a module-level event loop, so each
session runs on a daemon thread with a loop of its own. Message events are
handed back to the bridge loop and dispatched like webhook events.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Awaitable, Callable, Protocol

import lark_oapi as lark
import lark_oapi.ws.client as lark_ws_client
from lark_oapi.api.im.v1 import P2ImMessageReceiveV1

from flowbridge.config import FeishuConfig
from flowbridge.connection import ConnectionManager
from flowbridge.core.turn.api import InboundMessage
from flowbridge.platforms.feishu.events import is_message_event, parse_message_event

log = logging.getLogger("feishu.ws")

# A socket still running after this long counts as connected.
CONNECT_GRACE_S = 3.0

Deliver = Callable[[dict], None]
Dispatch = Callable[[InboundMessage], Awaitable[None]]


class EventSocket(Protocol):
    def run(self) -> None: ...

    def stop(self) -> None: ...


class LarkEventSocket:
    """One lark-oapi ws session. `run` blocks the calling thread."""

    def __init__(self, config: FeishuConfig, deliver: Deliver):
        self.config = config
        self.deliver = deliver
        self._loop: asyncio.AbstractEventLoop | None = None

    def _on_message(self, data: P2ImMessageReceiveV1) -> None:
        self.deliver(json.loads(lark.JSON.marshal(data)))

    def run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        # Client.start() runs on this module attribute, not on a loop it owns.
        lark_ws_client.loop = loop
        self._loop = loop

        handler = (
            lark.EventDispatcherHandler.builder("", "")
            .register_p2_im_message_receive_v1(self._on_message)
            .build()
        )
        client = lark.ws.Client(
            self.config.app_id,
            self.config.app_secret,
            event_handler=handler,
            domain=self.config.base_url.removesuffix("/open-apis"),
            log_level=lark.LogLevel.INFO,
        )
        try:
            client.start()
        finally:
            self._loop = None
            loop.close()

    def stop(self) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)


class FeishuLongConnection:
    """Keeps one event socket alive; `open_connection` is the manager's connect."""

    def __init__(
        self,
        dispatch: Dispatch,
        socket_factory: Callable[[Deliver], EventSocket],
        *,
        connect_grace_s: float | None = None,
    ):
        self.dispatch = dispatch
        self.socket_factory = socket_factory
        self.connect_grace_s = (
            CONNECT_GRACE_S if connect_grace_s is None else connect_grace_s
        )
        self.connection: ConnectionManager | None = None
        self.shutting_down = False

        self._socket: EventSocket | None = None
        self._live: EventSocket | None = None
        self._tasks: set[asyncio.Task] = set()

    async def open_connection(self) -> None:
        """Start a socket thread; raises ConnectionError if it exits during the grace period."""
        loop = asyncio.get_running_loop()
        exited: asyncio.Future = loop.create_future()

        def deliver(payload: dict) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(self._on_payload, payload)

        socket = self.socket_factory(deliver)

        def worker() -> None:
            error: Exception | None = None
            try:
                socket.run()
            except Exception as e:
                error = e
            if not loop.is_closed():
                loop.call_soon_threadsafe(self._on_exit, socket, exited, error)

        self._socket = socket
        threading.Thread(target=worker, name="feishu-ws", daemon=True).start()
        await asyncio.wait({exited}, timeout=self.connect_grace_s)

        if exited.done():
            error = exited.result()
            raise ConnectionError(
                f"Feishu event socket closed during startup: {error or 'no error'}"
            ) from error
        self._live = socket
        log.info("Feishu event socket running")

    def _on_exit(
        self, socket: EventSocket, exited: asyncio.Future, error: Exception | None
    ) -> None:
        if not exited.done():
            exited.set_result(error)
        # Startup failures are reported by open_connection() itself.
        if socket is not self._live:
            return
        self._live = None
        if self.shutting_down:
            log.info("Feishu event socket closed during shutdown")
            return
        log.warning("Feishu event socket exited: %s", error or "closed")
        if self.connection is not None:
            self.connection.connection_lost()

    def _on_payload(self, payload: dict) -> None:
        if self.shutting_down or not is_message_event(payload):
            return
        inbound = parse_message_event(payload)
        if inbound is None:
            return

        async def run() -> None:
            try:
                await self.dispatch(inbound)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Unhandled error dispatching %s", inbound.message_id)

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def shutdown(self) -> None:
        self.shutting_down = True
        if self.connection is not None:
            self.connection.stop()
        if self._socket is not None:
            self._socket.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
