#!/usr/bin/env python3
"""
Configuration loading for the bridge.

Call load_env() before get_config() so values from .env are visible.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from flowbridge.models import DEFAULT_MAX_TOKENS, MODEL_MAX_TOKENS
from flowbridge.runners.iflow.config import IFlowConfig

_log = logging.getLogger("config")

FEISHU_CONFIG_PATH = Path.home() / ".feishu-config" / "feishu-app.json"
PLATFORMS = ("feishu", "xmpp")


class ConfigError(RuntimeError):
    """Invalid or incomplete bridge configuration."""


@dataclass(frozen=True)
class FeishuConfig:
    app_id: str = ""
    app_secret: str = ""
    base_url: str = "https://open.feishu.cn/open-apis"
    long_connection: bool = True


@dataclass(frozen=True)
class XMPPConfig:
    jid: str = ""
    password: str = ""
    server: str = ""
    port: int = 5222
    recipient: str = ""


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 18080
    event_path: str = "/feishu/event"
    webhook: bool = True


@dataclass(frozen=True)
class SessionsConfig:
    dir: Path = field(
        default_factory=lambda: Path.home() / ".iflow-feishu" / "sessions"
    )
    max_history: int = 15
    context_messages: int = 10


@dataclass(frozen=True)
class BridgeConfig:
    platform: str
    feishu: FeishuConfig
    xmpp: XMPPConfig
    server: ServerConfig
    sessions: SessionsConfig
    iflow: IFlowConfig
    settings_path: Path
    log_dir: Path
    max_tokens: int = DEFAULT_MAX_TOKENS
    model_max_tokens: dict[str, int] = field(
        default_factory=lambda: dict(MODEL_MAX_TOKENS)
    )
    transcript_dir: Path | None = None


def _parse_int(raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        _log.warning("Ignoring non-integer value %r (using %d)", raw, default)
        return default


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    _log.warning("Ignoring non-boolean value %r (using %s)", raw, default)
    return default


def _optional_path(raw: str | None) -> Path | None:
    raw = (raw or "").strip()
    return Path(raw).expanduser() if raw else None


# =============================================================================
# Environment Loading
# =============================================================================


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


# =============================================================================
# Configuration (call load_env() before accessing these)
# =============================================================================


def load_feishu_credentials(path: Path | None = None) -> FeishuConfig:
    """Read app credentials from the JSON config file, falling back to env."""
    path = path or FEISHU_CONFIG_PATH
    base_url = os.getenv("FEISHU_BASE_URL", FeishuConfig.base_url).rstrip("/")

    if path.exists():
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            _log.error("Failed to read Feishu config %s: %s", path, e)
        else:
            if isinstance(payload, dict):
                app_id = payload.get("appId") or payload.get("app_id") or ""
                app_secret = payload.get("appSecret") or payload.get("app_secret") or ""
                if app_id and app_secret:
                    return FeishuConfig(
                        app_id=str(app_id), app_secret=str(app_secret), base_url=base_url
                    )

    return FeishuConfig(
        app_id=os.getenv("FEISHU_APP_ID", ""),
        app_secret=os.getenv("FEISHU_APP_SECRET", ""),
        base_url=base_url,
    )


def _load_model_max_tokens() -> dict[str, int]:
    table = dict(MODEL_MAX_TOKENS)
    raw = (os.getenv("FLOWBRIDGE_MODEL_MAX_TOKENS_JSON", "") or "").strip()
    if not raw:
        return table
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        _log.warning("Invalid FLOWBRIDGE_MODEL_MAX_TOKENS_JSON; using defaults: %s", e)
        return table
    if isinstance(payload, dict):
        for name, value in payload.items():
            if isinstance(value, int) and value > 0:
                table[str(name)] = value
    return table


def get_config() -> BridgeConfig:
    """Build the bridge configuration from environment."""
    home = Path.home()
    platform = (os.getenv("FLOWBRIDGE_PLATFORM", "feishu") or "feishu").strip().lower()

    xmpp_server = os.getenv("XMPP_SERVER", "")
    sessions_dir = Path(
        os.getenv("FLOWBRIDGE_SESSIONS_DIR", str(home / ".iflow-feishu" / "sessions"))
    )

    return BridgeConfig(
        platform=platform,
        feishu=replace(
            load_feishu_credentials(),
            long_connection=_parse_bool(os.getenv("FEISHU_LONG_CONNECTION"), True),
        ),
        xmpp=XMPPConfig(
            jid=os.getenv("XMPP_JID", ""),
            password=os.getenv("XMPP_PASSWORD", ""),
            server=xmpp_server,
            port=_parse_int(os.getenv("XMPP_PORT"), 5222),
            recipient=os.getenv("XMPP_RECIPIENT", ""),
        ),
        server=ServerConfig(
            host=os.getenv("FLOWBRIDGE_HOST", "0.0.0.0"),
            port=_parse_int(os.getenv("PORT"), 18080),
            event_path=os.getenv("FLOWBRIDGE_EVENT_PATH", "/feishu/event"),
            webhook=_parse_bool(os.getenv("FLOWBRIDGE_WEBHOOK"), True),
        ),
        sessions=SessionsConfig(
            dir=sessions_dir,
            max_history=_parse_int(os.getenv("FLOWBRIDGE_MAX_HISTORY"), 15),
        ),
        iflow=IFlowConfig.from_env(),
        settings_path=Path(
            os.getenv("IFLOW_SETTINGS_PATH", str(home / ".iflow" / "settings.json"))
        ),
        log_dir=Path(os.getenv("IFLOW_LOG_DIR", str(home / ".iflow" / "log"))),
        max_tokens=_parse_int(os.getenv("FLOWBRIDGE_MAX_TOKENS"), DEFAULT_MAX_TOKENS),
        model_max_tokens=_load_model_max_tokens(),
        transcript_dir=_optional_path(os.getenv("FLOWBRIDGE_TRANSCRIPT_DIR")),
    )


def validate_config(config: BridgeConfig) -> bool:
    """Raise ConfigError if the selected platform cannot start."""
    if config.platform not in PLATFORMS:
        raise ConfigError(
            f"Unknown platform {config.platform!r} (expected one of {', '.join(PLATFORMS)})"
        )

    if config.platform == "feishu":
        if not config.feishu.app_id:
            raise ConfigError("Missing Feishu App ID")
        if not config.feishu.app_secret:
            raise ConfigError("Missing Feishu App Secret")
        if not (config.feishu.long_connection or config.server.webhook):
            raise ConfigError(
                "Feishu needs FEISHU_LONG_CONNECTION or FLOWBRIDGE_WEBHOOK enabled"
            )
        if not (1 <= config.server.port <= 65535):
            raise ConfigError(f"Invalid server port: {config.server.port}")

    if config.platform == "xmpp":
        if not config.xmpp.jid or not config.xmpp.password:
            raise ConfigError("Missing XMPP_JID / XMPP_PASSWORD")
        if not config.xmpp.server:
            raise ConfigError("Missing XMPP_SERVER")

    if config.sessions.max_history < 1:
        raise ConfigError("FLOWBRIDGE_MAX_HISTORY must be at least 1")

    return True
