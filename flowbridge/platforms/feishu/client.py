"""HTTP client for the Feishu open platform."""

from __future__ import annotations

import asyncio
import json
import logging
import time

import aiohttp

from flowbridge.config import FeishuConfig
from flowbridge.core.turn.api import ChatDeliveryError
from flowbridge.platforms.feishu.errors import FeishuAPIError, FeishuDeliveryError

log = logging.getLogger("feishu")

REQUEST_TIMEOUT_S = 30
TOKEN_EXPIRY_MARGIN_S = 60


class FeishuClient:
    """Tenant-token authenticated client; implements ChatPlatformPort."""

    def __init__(
        self,
        config: FeishuConfig,
        *,
        session: aiohttp.ClientSession | None = None,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _make_url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_S)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        **kwargs,
    ) -> dict:
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("Content-Type", "application/json")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        session = self._get_session()
        async with session.request(
            method, self._make_url(path), headers=headers, **kwargs
        ) as resp:
            text = await resp.text()
            try:
                payload = json.loads(text) if text else {}
            except json.JSONDecodeError:
                payload = {}

            code = payload.get("code") if isinstance(payload, dict) else None
            if resp.status >= 400 or (isinstance(code, int) and code != 0):
                detail = ""
                if isinstance(payload, dict):
                    detail = str(payload.get("msg") or "")
                raise FeishuAPIError(
                    resp.status,
                    method=method,
                    path=path,
                    code=code if isinstance(code, int) else None,
                    detail=detail or text.strip() or resp.reason,
                )
            return payload if isinstance(payload, dict) else {}

    async def get_token(self) -> str:
        """Return the cached tenant token, refreshing it before expiry."""
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            log.info("Fetching tenant access token...")
            payload = await self.request_json(
                "POST",
                "/auth/v3/tenant_access_token/internal",
                json={"app_id": self.config.app_id, "app_secret": self.config.app_secret},
            )
            token = payload.get("tenant_access_token")
            if not isinstance(token, str) or not token:
                log.error("Token response missing tenant_access_token: %s", payload)
                raise FeishuAPIError(
                    200,
                    method="POST",
                    path="/auth/v3/tenant_access_token/internal",
                    detail="no tenant_access_token in response",
                )

            expire = payload.get("expire")
            expire_s = int(expire) if isinstance(expire, (int, float)) else 7200
            self._token = token
            self._token_expires_at = time.monotonic() + max(
                0, expire_s - TOKEN_EXPIRY_MARGIN_S
            )
            log.info("Tenant access token acquired")
            return token

    async def _post_message(self, chat_id: str, msg_type: str, content: dict) -> str:
        token = await self.get_token()
        payload = await self.request_json(
            "POST",
            "/im/v1/messages?receive_id_type=chat_id",
            token=token,
            json={
                "receive_id": chat_id,
                "msg_type": msg_type,
                "content": json.dumps(content, ensure_ascii=False),
            },
        )
        data = payload.get("data")
        message_id = data.get("message_id") if isinstance(data, dict) else None
        if not isinstance(message_id, str) or not message_id:
            raise FeishuDeliveryError(chat_id, "no message_id in response")
        return message_id

    async def send_message(self, conversation_key: str, payload: dict) -> str:
        """Send an interactive card; returns its message id."""
        try:
            message_id = await self._post_message(conversation_key, "interactive", payload)
        except ChatDeliveryError:
            raise
        except (FeishuAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error("Sending card failed: %s", e)
            raise ChatDeliveryError(conversation_key, str(e)) from e
        log.info("Card message sent")
        return message_id

    async def update_message(self, message_id: str, payload: dict) -> bool:
        try:
            token = await self.get_token()
            await self.request_json(
                "PATCH",
                f"/im/v1/messages/{message_id}",
                token=token,
                json={"content": json.dumps(payload, ensure_ascii=False)},
            )
        except (FeishuAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error("Updating card failed: %s", e)
            return False
        return True

    async def mark_read(self, message_id: str) -> bool:
        try:
            token = await self.get_token()
            await self.request_json(
                "PATCH",
                f"/im/v1/messages/{message_id}/read_status",
                token=token,
                json={"read_status": True},
            )
        except (FeishuAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning("Mark read failed: %s", e)
            return False
        return True
