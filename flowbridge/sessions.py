#!/usr/bin/env python3
"""Conversation history store.

One JSON record per conversation key:
    {"messages": [{"role", "content", "timestamp"}], "createdAt": <ms>}

Records are loaded lazily, cached in memory, capped to the most recent
`max_history` messages and rewritten in full after every append.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from flowbridge.utils import safe_part

log = logging.getLogger("sessions")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChatMessage:
    role: str
    content: str
    timestamp: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


@dataclass
class ConversationSession:
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: int = field(default_factory=_now_ms)

    def history_length(self) -> int:
        """Total characters across all stored messages."""
        return sum(len(m.content or "") for m in self.messages)

    def to_dict(self) -> dict:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, payload: object) -> "ConversationSession":
        if not isinstance(payload, dict):
            raise ValueError("session record must be a JSON object")
        raw_messages = payload.get("messages")
        if raw_messages is None:
            raw_messages = []
        if not isinstance(raw_messages, list):
            raise ValueError("session messages must be a JSON array")
        messages: list[ChatMessage] = []
        for item in raw_messages:
            if not isinstance(item, dict):
                continue
            role = str(item.get("role") or "")
            if role not in ("user", "assistant"):
                continue
            ts = item.get("timestamp")
            messages.append(
                ChatMessage(
                    role=role,
                    content=str(item.get("content") or ""),
                    timestamp=int(ts) if isinstance(ts, (int, float)) else _now_ms(),
                )
            )
        created = payload.get("createdAt")
        return cls(
            messages=messages,
            created_at=int(created) if isinstance(created, (int, float)) else _now_ms(),
        )


class SessionStore:
    """Per-conversation message log, persisted as one JSON file per key."""

    def __init__(self, base_dir: Path, max_history: int = 15):
        self.base_dir = Path(base_dir)
        self.max_history = max(1, int(max_history))
        self._sessions: dict[str, ConversationSession] = {}
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{safe_part(key)}.json"

    def _load(self, key: str) -> ConversationSession:
        path = self._path(key)
        if not path.exists():
            return ConversationSession()
        try:
            return ConversationSession.from_dict(
                json.loads(path.read_text(encoding="utf-8"))
            )
        except (OSError, ValueError, TypeError, OverflowError) as e:
            log.warning("Ignoring unreadable session file %s: %s", path, e)
            return ConversationSession()

    def get(self, key: str) -> ConversationSession:
        session = self._sessions.get(key)
        if session is None:
            session = self._load(key)
            self._sessions[key] = session
        return session

    def add_message(self, key: str, role: str, content: str) -> ConversationSession:
        session = self.get(key)
        session.messages.append(ChatMessage(role=role, content=content))

        if len(session.messages) > self.max_history:
            session.messages = session.messages[-self.max_history :]

        self._save(key, session)
        return session

    def _save(self, key: str, session: ConversationSession) -> None:
        path = self._path(key)
        path.write_text(
            json.dumps(session.to_dict(), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )

    def clear(self, key: str) -> None:
        self._sessions.pop(key, None)
        path = self._path(key)
        if path.exists():
            path.unlink()

    def count(self) -> int:
        return len(self._sessions)
