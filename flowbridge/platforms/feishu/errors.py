"""Feishu-specific exceptions."""

from __future__ import annotations

from flowbridge.core.turn.api import ChatDeliveryError


class FeishuAPIError(RuntimeError):
    """HTTP or API-level error from the Feishu open platform."""

    def __init__(
        self,
        status: int,
        *,
        method: str,
        path: str,
        code: int | None = None,
        detail: str | None = None,
    ):
        self.status = int(status)
        self.method = method
        self.path = path
        self.code = code
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        parts = [f"Feishu HTTP {self.status} {self.method} {self.path}"]
        if self.code:
            parts.append(f"(code {self.code})")
        detail = (self.detail or "").strip()
        if detail:
            return " ".join(parts) + f": {detail}"
        return " ".join(parts)


class FeishuDeliveryError(ChatDeliveryError):
    """Feishu accepted the request but returned no message id."""
