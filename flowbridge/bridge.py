#!/usr/bin/env python3
"""
flowbridge - chat bridge for the iFlow CLI

Each chat message becomes one CLI run. The reply is posted as a placeholder
and edited in place as output streams in.

Platforms (FLOWBRIDGE_PLATFORM):
- feishu - webhook server on PORT (default 18080) at /feishu/event, plus /health
- xmpp   - one persistent client connection, reconnected with backoff
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from flowbridge.config import ConfigError, get_config, load_env, validate_config
from flowbridge.service import BridgeService, CLINotAvailable

log = logging.getLogger("bridge")


def setup_logging() -> None:
    level_name = (os.getenv("FLOWBRIDGE_LOG_LEVEL", "INFO") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    if exc is not None:
        log.error("%s", message, exc_info=exc)
    else:
        log.error("%s", message)


async def main() -> int:
    load_env()
    setup_logging()

    config = get_config()
    try:
        validate_config(config)
    except ConfigError as e:
        log.error("Configuration error: %s", e)
        return 1

    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    service = BridgeService(config)
    try:
        await service.start()
    except CLINotAvailable as e:
        log.error("%s", e)
        return 1

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
    finally:
        log.info("Shutting down...")
        await service.stop()
    return 0


def run() -> None:
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        log.info("Shutting down...")


if __name__ == "__main__":
    run()
