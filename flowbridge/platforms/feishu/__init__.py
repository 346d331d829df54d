"""Feishu (Lark) chat platform adapter."""

from flowbridge.platforms.feishu.cards import FeishuCardRenderer, format_duration
from flowbridge.platforms.feishu.client import FeishuClient
from flowbridge.platforms.feishu.errors import FeishuAPIError
from flowbridge.platforms.feishu.longconn import FeishuLongConnection, LarkEventSocket
from flowbridge.platforms.feishu.server import create_app, start_event_server

__all__ = [
    "FeishuAPIError",
    "FeishuCardRenderer",
    "FeishuClient",
    "FeishuLongConnection",
    "LarkEventSocket",
    "create_app",
    "format_duration",
    "start_event_server",
]
