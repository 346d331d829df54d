"""iFlow runner configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class IFlowConfig:
    command: str = "iflow"
    timeout_s: float = 300.0
    work_dir: str | None = None

    # Extra variables merged over the process environment, e.g. search
    # provider keys.
    extra_env: dict[str, str] = field(default_factory=dict)

    max_attempts: int = 3
    retry_delay_s: float = 2.0
    kill_grace_s: float = 5.0

    def resolve_work_dir(self) -> str:
        return self.work_dir or os.getenv("HOME") or str(Path.home())

    @classmethod
    def from_env(cls) -> "IFlowConfig":
        extra: dict[str, str] = {}
        raw = (os.getenv("IFLOW_SEARCH_ENV_JSON", "") or "").strip()
        if raw:
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                payload = None
            if isinstance(payload, dict):
                extra = {str(k): str(v) for k, v in payload.items()}

        try:
            timeout_s = float(os.getenv("IFLOW_TIMEOUT_S", "300"))
        except ValueError:
            timeout_s = 300.0

        return cls(
            command=os.getenv("IFLOW_BIN", "iflow"),
            timeout_s=timeout_s,
            work_dir=os.getenv("IFLOW_WORK_DIR") or None,
            extra_env=extra,
        )
