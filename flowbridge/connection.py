"""Event connection supervision.

The bridge keeps exactly one live event connection. When it fails, the
ConnectionManager retries the same start sequence with capped exponential
backoff and gives up for good after `max_attempts` consecutive failures (a
process supervisor is expected to restart us).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from flowbridge.models import (
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY_MS,
)

log = logging.getLogger("connection")


@dataclass(frozen=True)
class Backoff:
    base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    max_attempts: int = RECONNECT_MAX_ATTEMPTS

    def delay_ms(self, attempt: int) -> int:
        attempt = max(1, int(attempt))
        return min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)

    def delay_s(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


class ConnectionManager:
    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        *,
        backoff: Backoff | None = None,
        name: str = "events",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._connect = connect
        self.backoff = backoff or Backoff()
        self.name = name
        self._sleep = sleep

        self.attempt = 0
        self.gave_up = False
        self.connected = False
        self._stopped = False
        self._reconnect_task: asyncio.Task | None = None

    async def start(self) -> bool:
        """Run the start sequence once; schedule a reconnect if it fails."""
        if self._stopped:
            return False
        try:
            await self._connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.connected = False
            log.error("%s connection failed: %s", self.name, e)
            self.schedule_reconnect()
            return False

        self.mark_connected()
        return True

    def mark_connected(self) -> None:
        if self.attempt:
            log.info("%s reconnected after %d attempt(s)", self.name, self.attempt)
        else:
            log.info("%s connected", self.name)
        self.connected = True
        self.attempt = 0

    def connection_lost(self) -> None:
        self.connected = False
        if self._stopped:
            log.info("%s disconnected during shutdown; not reconnecting", self.name)
            return
        log.warning("%s connection lost", self.name)
        self.schedule_reconnect()

    def reconnect_pending(self) -> bool:
        return bool(self._reconnect_task and not self._reconnect_task.done())

    def schedule_reconnect(self) -> None:
        if self._stopped or self.gave_up:
            return
        if self.reconnect_pending():
            log.debug("%s reconnect already in progress; skipping duplicate", self.name)
            return
        if self.backoff.exhausted(self.attempt):
            self.gave_up = True
            log.error(
                "%s: giving up reconnect after %d attempts", self.name, self.attempt
            )
            return

        self.attempt += 1
        delay = self.backoff.delay_s(self.attempt)
        log.warning(
            "%s: reconnecting (attempt %d/%d) in %.1fs...",
            self.name,
            self.attempt,
            self.backoff.max_attempts,
            delay,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        # Clear before retrying so a failure inside start() can schedule again.
        self._reconnect_task = None
        if self._stopped:
            return
        await self.start()

    async def wait_idle(self) -> None:
        """Wait until no reconnect is pending (used by tests and shutdown)."""
        while self._reconnect_task is not None:
            task = self._reconnect_task
            await asyncio.gather(task, return_exceptions=True)
            if self._reconnect_task is task:
                break

    def stop(self) -> None:
        self._stopped = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done():
            task.cancel()
