"""XMPP chat adapter.

One client connection serves both directions: inbound chat messages from the
owner become turns, and replies are sent, corrected in place (XEP-0308) and
marked read (XEP-0333) over the same stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable

from slixmpp import ClientXMPP

from flowbridge.config import XMPPConfig
from flowbridge.connection import ConnectionManager
from flowbridge.core.turn.api import ChatDeliveryError, InboundMessage
from flowbridge.utils import BoundedMap

Dispatch = Callable[[InboundMessage], Awaitable[None]]

CONNECT_TIMEOUT_S = 30.0


class XMPPChatBot(ClientXMPP):
    def __init__(self, config: XMPPConfig, dispatch: Dispatch | None = None):
        super().__init__(config.jid, config.password)
        self.config = config
        self.dispatch = dispatch
        self.connection: ConnectionManager | None = None
        self.log = logging.getLogger("xmpp")

        self._connected_event = asyncio.Event()
        self.shutting_down = False
        self._tasks: set[asyncio.Task] = set()

        # message id -> peer jid, for corrections and read markers
        self._sent = BoundedMap[str, str](512)
        self._received = BoundedMap[str, str](512)

        self.register_plugin("xep_0199")  # Ping
        self.register_plugin("xep_0085")  # Chat State Notifications
        self.register_plugin("xep_0308")  # Last Message Correction
        self.register_plugin("xep_0333")  # Chat Markers

        self.add_event_handler("session_start", self.on_start)
        self.add_event_handler("message", self.on_message)
        self.add_event_handler("disconnected", self.on_disconnected)

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def connect_to_server(self, server: str, port: int = 5222):
        """Connect with standard settings (unencrypted, no TLS)."""
        self["feature_mechanisms"].unencrypted_plain = True  # type: ignore[attr-defined]
        self.enable_starttls = False
        self.enable_direct_tls = False
        self.enable_plaintext = True
        self.connect((server, port))  # type: ignore[arg-type]

    def set_connected(self, connected: bool) -> None:
        if connected:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    def is_connected(self) -> bool:
        return self._connected_event.is_set()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def open_connection(self, timeout: float = CONNECT_TIMEOUT_S) -> None:
        """Connect and wait for session start; raises ConnectionError on failure."""
        self.set_connected(False)
        self.connect_to_server(self.config.server, self.config.port)
        if not await self.wait_connected(timeout):
            # Cancel slixmpp's own connect loop before the manager retries.
            self.disconnect()
            raise ConnectionError(
                f"XMPP session did not start within {timeout:.0f}s "
                f"({self.config.server}:{self.config.port})"
            )

    async def on_start(self, event):
        self.send_presence()
        try:
            await asyncio.wait_for(self.get_roster(), timeout=15)
        except asyncio.TimeoutError:
            self.log.error("Startup timed out during roster fetch")
            self.disconnect()
            return
        self.log.info("Connected as %s", self.boundjid.bare)
        self.set_connected(True)

    def on_disconnected(self, event):
        was_connected = self.is_connected()
        self.set_connected(False)
        if self.shutting_down:
            self.log.info("Disconnected during shutdown; not reconnecting")
            return
        # A failed open_connection() is reported by the manager itself.
        if was_connected and self.connection is not None:
            self.connection.connection_lost()

    async def shutdown(self) -> None:
        self.shutting_down = True
        if self.connection is not None:
            self.connection.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.disconnect()

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def _to_inbound(self, msg) -> InboundMessage | None:
        if msg["type"] not in ("chat", "normal"):
            return None
        sender = str(msg["from"].bare)
        if self.config.recipient and sender != self.config.recipient:
            return None
        body = (msg["body"] or "").strip()
        if not body:
            return None
        return InboundMessage(
            conversation_key=sender,
            message_id=str(msg["id"] or ""),
            message_type="text",
            raw_content=json.dumps({"text": body}, ensure_ascii=False),
        )

    async def on_message(self, msg):
        if self.shutting_down:
            return
        inbound = self._to_inbound(msg)
        if inbound is None or self.dispatch is None:
            return
        if inbound.message_id:
            self._received[inbound.message_id] = str(msg["from"])
        task = asyncio.create_task(self._guard(self.dispatch(inbound)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, coro) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            self.log.exception("Unhandled error (xmpp.on_message)")

    # -------------------------------------------------------------------------
    # ChatPlatformPort
    # -------------------------------------------------------------------------

    async def send_message(self, conversation_key: str, payload: str) -> str:
        if not self.is_connected():
            raise ChatDeliveryError(conversation_key, "XMPP not connected")
        msg = self.make_message(mto=conversation_key, mbody=str(payload), mtype="chat")
        message_id = self.new_id()
        msg["id"] = message_id
        msg["chat_state"] = "active"
        msg.send()
        self._sent[message_id] = conversation_key
        return message_id

    async def update_message(self, message_id: str, payload: str) -> bool:
        to = self._sent.get(message_id)
        if to is None:
            self.log.warning("Cannot correct unknown message %s", message_id)
            return False
        if not self.is_connected():
            return False
        msg = self.make_message(mto=to, mbody=str(payload), mtype="chat")
        msg["replace"]["id"] = message_id
        msg.send()
        return True

    async def mark_read(self, message_id: str) -> bool:
        to = self._received.get(message_id)
        if to is None or not self.is_connected():
            return False
        self["xep_0333"].send_marker(to, message_id, "displayed")  # type: ignore[attr-defined]
        return True
