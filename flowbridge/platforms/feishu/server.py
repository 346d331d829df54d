"""HTTP server: /health, plus the Feishu event webhook unless it is disabled."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable

from aiohttp import web

from flowbridge.core.turn.api import InboundMessage
from flowbridge.models import SERVICE_NAME, VERSION
from flowbridge.platforms.feishu.events import is_message_event, parse_message_event

log = logging.getLogger("feishu.server")

Dispatch = Callable[[InboundMessage], Awaitable[None]]

_TASKS_KEY = web.AppKey("tasks", set)


def _iso_now() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def create_app(
    dispatch: Dispatch,
    *,
    event_path: str | None = "/feishu/event",
    started_at: float | None = None,
) -> web.Application:
    started = time.monotonic() if started_at is None else started_at
    app = web.Application()
    app[_TASKS_KEY] = set()

    def _spawn(inbound: InboundMessage) -> None:
        async def run() -> None:
            try:
                await dispatch(inbound)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Unhandled error dispatching %s", inbound.message_id)

        task = asyncio.create_task(run())
        tasks: set = app[_TASKS_KEY]
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def health(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "version": VERSION,
                "uptime": int(time.monotonic() - started),
                "timestamp": _iso_now(),
            },
            headers={"Access-Control-Allow-Origin": "*"},
        )

    async def event(request: web.Request) -> web.Response:
        body = await request.text()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            log.error("Bad event payload: %s", e)
            return web.Response(status=400, text="Bad Request")
        if not isinstance(payload, dict):
            log.error("Bad event payload: expected a JSON object")
            return web.Response(status=400, text="Bad Request")

        if "challenge" in payload:
            return web.json_response({"challenge": payload["challenge"]})

        if is_message_event(payload):
            inbound = parse_message_event(payload)
            if inbound is not None:
                _spawn(inbound)

        return web.json_response({"code": 0, "msg": "success"})

    async def drain(app: web.Application) -> None:
        tasks = list(app[_TASKS_KEY])
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    app.router.add_get("/health", health)
    if event_path:
        app.router.add_post(event_path, event)
    app.on_cleanup.append(drain)
    return app


async def start_event_server(
    app: web.Application,
    *,
    host: str = "0.0.0.0",
    port: int = 18080,
) -> tuple[web.AppRunner, str, int]:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=host, port=port)
    await site.start()
    log.info("HTTP server listening on http://%s:%d", host, port)
    return runner, host, port
