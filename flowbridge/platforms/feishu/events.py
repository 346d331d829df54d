"""Feishu event payload parsing."""

from __future__ import annotations

import json
import logging

from flowbridge.core.turn.api import InboundMessage

log = logging.getLogger("feishu")

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"


def is_message_event(payload: dict) -> bool:
    header = payload.get("header")
    if isinstance(header, dict) and header.get("event_type") == MESSAGE_RECEIVE_EVENT:
        return True
    event = payload.get("event")
    return isinstance(event, dict) and event.get("type") == MESSAGE_RECEIVE_EVENT


def _find_message(payload: dict) -> dict | None:
    event = payload.get("event")
    if isinstance(event, dict) and isinstance(event.get("message"), dict):
        return event["message"]
    body = payload.get("body")
    if isinstance(body, dict):
        body_event = body.get("event")
        if isinstance(body_event, dict) and isinstance(body_event.get("message"), dict):
            return body_event["message"]
    message = payload.get("message")
    if isinstance(message, dict):
        return message
    return None


def parse_message_event(payload: dict) -> InboundMessage | None:
    message = _find_message(payload)
    if message is None:
        log.warning("Cannot parse message: unexpected event shape")
        return None

    content = message.get("content")
    if isinstance(content, dict):
        content = json.dumps(content, ensure_ascii=False)

    return InboundMessage(
        conversation_key=str(message.get("chat_id") or ""),
        message_id=str(message.get("message_id") or ""),
        message_type=str(message.get("message_type") or ""),
        raw_content="" if content is None else str(content),
    )
