import json

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from flowbridge.config import FeishuConfig
from flowbridge.core.turn import ChatDeliveryError
from flowbridge.platforms.feishu import FeishuAPIError, FeishuClient


class FakeFeishu:
    """Minimal stand-in for the open platform API."""

    def __init__(self):
        self.token_requests = 0
        self.messages: list[dict] = []
        self.patches: list[tuple[str, dict, str]] = []
        self.fail_send = False

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/auth/v3/tenant_access_token/internal", self.token)
        app.router.add_post("/im/v1/messages", self.send)
        app.router.add_patch("/im/v1/messages/{id}", self.patch)
        app.router.add_patch("/im/v1/messages/{id}/read_status", self.patch)
        return app

    async def token(self, request: web.Request) -> web.Response:
        self.token_requests += 1
        body = await request.json()
        assert body == {"app_id": "cli_a", "app_secret": "s3cret"}
        return web.json_response({"code": 0, "tenant_access_token": "t-1", "expire": 7200})

    async def send(self, request: web.Request) -> web.Response:
        assert request.query["receive_id_type"] == "chat_id"
        assert request.headers["Authorization"] == "Bearer t-1"
        if self.fail_send:
            return web.json_response({"code": 230002, "msg": "bot not in chat"})
        body = await request.json()
        self.messages.append(body)
        return web.json_response({"code": 0, "data": {"message_id": f"om_{len(self.messages)}"}})

    async def patch(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.patches.append((request.match_info["id"], body, request.path))
        if request.match_info["id"] == "om_gone":
            return web.json_response({"code": 230011, "msg": "message deleted"}, status=400)
        return web.json_response({"code": 0})


@pytest_asyncio.fixture
async def feishu():
    fake = FakeFeishu()
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    client = FeishuClient(
        FeishuConfig(app_id="cli_a", app_secret="s3cret", base_url=str(server.make_url("/")))
    )
    try:
        yield fake, client
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_send_card_and_reuse_token(feishu):
    fake, client = feishu
    card = {"elements": [{"tag": "markdown", "content": "你好"}]}

    assert await client.send_message("oc_1", card) == "om_1"
    assert await client.send_message("oc_1", card) == "om_2"

    assert fake.token_requests == 1
    first = fake.messages[0]
    assert first["receive_id"] == "oc_1"
    assert first["msg_type"] == "interactive"
    assert json.loads(first["content"]) == card
    assert len(fake.messages) == 2


@pytest.mark.asyncio
async def test_send_failure_raises_delivery_error(feishu):
    fake, client = feishu
    fake.fail_send = True
    with pytest.raises(ChatDeliveryError) as excinfo:
        await client.send_message("oc_1", {})
    assert "oc_1" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, FeishuAPIError)
    assert excinfo.value.__cause__.code == 230002


@pytest.mark.asyncio
async def test_update_and_mark_read_report_success(feishu):
    fake, client = feishu
    assert await client.update_message("om_9", {"elements": []}) is True
    assert await client.mark_read("om_9") is True
    assert await client.update_message("om_gone", {"elements": []}) is False

    paths = [path for _, _, path in fake.patches]
    assert paths == [
        "/im/v1/messages/om_9",
        "/im/v1/messages/om_9/read_status",
        "/im/v1/messages/om_gone",
    ]
    assert fake.patches[1][1] == {"read_status": True}


def test_api_error_message():
    err = FeishuAPIError(400, method="PATCH", path="/im/v1/messages/x", code=1, detail="bad")
    assert "400" in str(err)
    assert "PATCH /im/v1/messages/x" in str(err)
