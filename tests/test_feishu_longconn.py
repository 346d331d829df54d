import asyncio
import threading

import pytest

from flowbridge.connection import Backoff, ConnectionManager
from flowbridge.platforms.feishu.longconn import FeishuLongConnection


def receive_event(chat_id: str = "oc_1", text: str = "hi") -> dict:
    return {
        "schema": "2.0",
        "header": {"event_type": "im.message.receive_v1"},
        "event": {
            "message": {
                "chat_id": chat_id,
                "message_id": "om_1",
                "message_type": "text",
                "content": '{"text": "%s"}' % text,
            }
        },
    }


class FakeSocket:
    """Stands in for the lark ws session; blocks until stopped or dropped."""

    def __init__(self, deliver, *, error=None, events=()):
        self.deliver = deliver
        self.error = error
        self.events = list(events)
        self.finished = threading.Event()

    def run(self) -> None:
        if self.error is not None:
            raise self.error
        for payload in self.events:
            self.deliver(payload)
        self.finished.wait(5)

    def stop(self) -> None:
        self.finished.set()


class SocketFactory:
    def __init__(self, *plans):
        self.plans = list(plans)
        self.sockets: list[FakeSocket] = []

    def __call__(self, deliver):
        plan = self.plans.pop(0) if self.plans else {}
        socket = FakeSocket(deliver, **plan)
        self.sockets.append(socket)
        return socket


def make_connection(factory, dispatched):
    async def dispatch(inbound):
        dispatched.append(inbound)

    feishu = FeishuLongConnection(dispatch, factory, connect_grace_s=0.2)
    manager = ConnectionManager(
        feishu.open_connection,
        backoff=Backoff(base_delay_ms=1, max_delay_ms=1, max_attempts=3),
        name="feishu",
    )
    feishu.connection = manager
    return feishu, manager


async def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_events_from_socket_are_dispatched():
    dispatched = []
    other = {"header": {"event_type": "im.chat.updated_v1"}}
    factory = SocketFactory({"events": [receive_event(text="你好"), other]})
    feishu, manager = make_connection(factory, dispatched)

    assert await manager.start()
    await wait_for(lambda: dispatched)

    assert manager.connected
    assert dispatched[0].conversation_key == "oc_1"
    assert dispatched[0].text() == "你好"
    await asyncio.sleep(0.02)
    assert len(dispatched) == 1
    await feishu.shutdown()


@pytest.mark.asyncio
async def test_startup_failure_is_retried_with_backoff():
    factory = SocketFactory({"error": RuntimeError("bad credentials")}, {})
    feishu, manager = make_connection(factory, [])

    assert not await manager.start()
    assert manager.attempt == 1
    await manager.wait_idle()

    assert manager.connected
    assert manager.attempt == 0
    assert len(factory.sockets) == 2
    await feishu.shutdown()


@pytest.mark.asyncio
async def test_dropped_socket_reconnects():
    factory = SocketFactory()
    feishu, manager = make_connection(factory, [])
    assert await manager.start()

    factory.sockets[0].finished.set()
    await wait_for(lambda: len(factory.sockets) == 2 and manager.connected)

    assert manager.attempt == 0
    await feishu.shutdown()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    failing = {"error": ConnectionError("unreachable")}
    factory = SocketFactory(failing, failing, failing, failing, failing)
    feishu, manager = make_connection(factory, [])

    await manager.start()
    await wait_for(lambda: manager.gave_up)

    assert not manager.connected
    assert len(factory.sockets) == 4
    await feishu.shutdown()


@pytest.mark.asyncio
async def test_shutdown_stops_socket_without_reconnect():
    factory = SocketFactory()
    feishu, manager = make_connection(factory, [])
    assert await manager.start()

    await feishu.shutdown()
    await asyncio.sleep(0.05)

    assert factory.sockets[0].finished.is_set()
    assert len(factory.sockets) == 1
    assert not manager.reconnect_pending()
