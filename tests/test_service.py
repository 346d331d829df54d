from pathlib import Path

import pytest

import flowbridge.platforms.feishu.longconn as longconn
from flowbridge.config import (
    BridgeConfig,
    FeishuConfig,
    ServerConfig,
    SessionsConfig,
    XMPPConfig,
)
from flowbridge.runners import IFlowConfig
from flowbridge.service import BridgeService, CLINotAvailable
from tests.conftest import FakeRunner
from tests.test_feishu_longconn import SocketFactory, receive_event, wait_for


class CheckedRunner(FakeRunner):
    def __init__(self, available: bool):
        super().__init__()
        self.available = available

    async def check_available(self, timeout_s: float = 15.0):
        return self.available, "iflow 0.3.1" if self.available else "not found"


def bridge_config(tmp_path: Path, **overrides) -> BridgeConfig:
    values = dict(
        platform="feishu",
        feishu=FeishuConfig(app_id="cli_a", app_secret="s", long_connection=False),
        xmpp=XMPPConfig(),
        server=ServerConfig(host="127.0.0.1", port=0),
        sessions=SessionsConfig(dir=tmp_path / "sessions"),
        iflow=IFlowConfig(command="iflow"),
        settings_path=tmp_path / "settings.json",
        log_dir=tmp_path / "log",
    )
    values.update(overrides)
    return BridgeConfig(**values)


@pytest.mark.asyncio
async def test_health_check_reports_components(tmp_path):
    service = BridgeService(bridge_config(tmp_path), runner=CheckedRunner(True))
    service.sessions.add_message("chat", "user", "x")

    health = await service.health_check()

    assert health == {"iflow": True, "config": True, "sessions": True, "sessionCount": 1}


@pytest.mark.asyncio
async def test_health_check_flags_missing_cli_and_credentials(tmp_path):
    config = bridge_config(tmp_path, feishu=FeishuConfig())
    service = BridgeService(config, runner=CheckedRunner(False))

    health = await service.health_check()

    assert health["iflow"] is False
    assert health["config"] is False


@pytest.mark.asyncio
async def test_start_refuses_without_cli(tmp_path):
    service = BridgeService(bridge_config(tmp_path), runner=CheckedRunner(False))
    with pytest.raises(CLINotAvailable, match="not found"):
        await service.start()
    await service.stop()


@pytest.mark.asyncio
async def test_start_and_stop_feishu_server(tmp_path):
    service = BridgeService(bridge_config(tmp_path), runner=CheckedRunner(True))
    await service.start()
    try:
        assert service._http_runner is not None
        assert service.orchestrator.commands is service.commands
    finally:
        await service.stop()
    assert service._http_runner is None


@pytest.mark.asyncio
async def test_feishu_long_connection_feeds_the_orchestrator(tmp_path, monkeypatch):
    monkeypatch.setattr(longconn, "CONNECT_GRACE_S", 0.1)
    config = bridge_config(
        tmp_path,
        feishu=FeishuConfig(app_id="cli_a", app_secret="s"),
        server=ServerConfig(host="127.0.0.1", port=0, webhook=False),
    )
    factory = SocketFactory({"events": [receive_event(text="/help")]})
    service = BridgeService(config, runner=CheckedRunner(True), socket_factory=factory)
    handled = []

    async def handle_event(inbound):
        handled.append(inbound)

    service._feishu_ws.dispatch = handle_event
    await service.start()
    try:
        assert service.connection.name == "feishu"
        assert service.connection.connected
        await wait_for(lambda: handled)
        assert handled[0].text() == "/help"
        routes = {r.resource.canonical for r in service._http_runner.app.router.routes()}
        assert "/health" in routes
        assert "/feishu/event" not in routes
    finally:
        await service.stop()
    assert factory.sockets[0].finished.is_set()
