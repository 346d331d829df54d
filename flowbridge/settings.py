"""Access to the iFlow CLI's own settings file (~/.iflow/settings.json)."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from flowbridge.models import DEFAULT_MODEL

log = logging.getLogger("settings")


class IFlowSettings:
    def __init__(self, path: Path, default_model: str = DEFAULT_MODEL):
        self.path = Path(path)
        self.default_model = default_model

    def read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Failed to read settings %s: %s", self.path, e)
            return {}
        return payload if isinstance(payload, dict) else {}

    def model_name(self) -> str:
        return str(self.read().get("modelName") or self.default_model)

    def mode(self) -> str:
        return str(self.read().get("mode") or "default")

    def set_mode(self, mode: str) -> None:
        """Persist the mode; other keys in the file are preserved."""
        settings = self.read()
        settings["mode"] = mode
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(settings, indent=2), encoding="utf-8")
