"""Shared helpers."""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


def safe_part(text: str) -> str:
    """Reduce text to a filename-safe token."""
    out: list[str] = []
    for ch in text or "":
        if ch.isalnum() or ch in {"-", "_", ".", "@"}:
            out.append(ch)
    return "".join(out).strip(".") or "_"


def format_duration(ms: int) -> str:
    """Human duration: 850ms, 12s, 3m 5s, 1h 2m 3s."""
    ms = int(ms)
    if ms < 1000:
        return f"{ms}ms"

    total_seconds = ms // 1000
    seconds = total_seconds % 60
    total_minutes = total_seconds // 60
    minutes = total_minutes % 60
    hours = total_minutes // 60

    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class BoundedMap(Generic[K, V]):
    """Insertion-ordered map that forgets its oldest entries past `limit`."""

    def __init__(self, limit: int = 512):
        self.limit = limit
        self._items: OrderedDict[K, V] = OrderedDict()

    def __setitem__(self, key: K, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.limit:
            self._items.popitem(last=False)

    def get(self, key: K) -> V | None:
        return self._items.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
