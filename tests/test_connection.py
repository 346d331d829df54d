import asyncio

import pytest

from flowbridge.connection import Backoff, ConnectionManager


def test_backoff_sequence_caps_at_max():
    backoff = Backoff(base_delay_ms=1000, max_delay_ms=30000)
    delays = [backoff.delay_ms(n) for n in range(1, 8)]
    assert delays == [1000, 2000, 4000, 8000, 16000, 30000, 30000]


def test_backoff_treats_attempt_below_one_as_first():
    backoff = Backoff()
    assert backoff.delay_ms(0) == backoff.delay_ms(1) == 1000
    assert backoff.delay_s(2) == 2.0


def test_backoff_exhausted():
    backoff = Backoff(max_attempts=3)
    assert not backoff.exhausted(2)
    assert backoff.exhausted(3)


class FlakyConnect:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"refused #{self.calls}")


@pytest.mark.asyncio
async def test_reconnects_with_backoff_and_resets_counter():
    slept: list[float] = []

    async def fake_sleep(delay: float) -> None:
        slept.append(delay)

    connect = FlakyConnect(failures=3)
    manager = ConnectionManager(connect, sleep=fake_sleep)

    assert await manager.start() is False
    await manager.wait_idle()

    assert connect.calls == 4
    assert slept == [1.0, 2.0, 4.0]
    assert manager.connected
    assert manager.attempt == 0
    assert not manager.gave_up


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    slept: list[float] = []

    async def fake_sleep(delay: float) -> None:
        slept.append(delay)

    connect = FlakyConnect(failures=100)
    manager = ConnectionManager(
        connect, backoff=Backoff(max_attempts=3), sleep=fake_sleep
    )

    await manager.start()
    await manager.wait_idle()

    assert manager.gave_up
    assert connect.calls == 4  # initial start + 3 retries
    assert slept == [1.0, 2.0, 4.0]

    manager.schedule_reconnect()
    assert not manager.reconnect_pending()


@pytest.mark.asyncio
async def test_only_one_reconnect_in_flight():
    release = asyncio.Event()

    async def blocking_sleep(_delay: float) -> None:
        await release.wait()

    connect = FlakyConnect(failures=0)
    manager = ConnectionManager(connect, sleep=blocking_sleep)

    manager.connection_lost()
    manager.connection_lost()
    manager.schedule_reconnect()

    assert manager.attempt == 1
    assert manager.reconnect_pending()

    release.set()
    await manager.wait_idle()
    assert connect.calls == 1
    assert manager.attempt == 0


@pytest.mark.asyncio
async def test_stop_cancels_pending_reconnect():
    async def never(_delay: float) -> None:
        await asyncio.Event().wait()

    connect = FlakyConnect(failures=0)
    manager = ConnectionManager(connect, sleep=never)
    manager.connection_lost()
    assert manager.reconnect_pending()

    manager.stop()
    await asyncio.sleep(0)
    assert not manager.reconnect_pending()
    manager.connection_lost()
    assert not manager.reconnect_pending()
    assert connect.calls == 0
