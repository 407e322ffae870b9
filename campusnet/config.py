from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping

from .constants import (
    COMPONENT_LOGGERS,
    DEFAULT_PORT,
    DEFAULT_WS_PATH,
    DUP_REPLACE,
    DUPLICATE_LOGIN_POLICIES,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    ws_path: str = DEFAULT_WS_PATH
    server_name: str = "CampusNet"
    duplicate_login: str = DUP_REPLACE
    rate_limit_msgs_per_minute: int = 0
    max_chunk_chars: int = 0
    max_frame_bytes: int = 100 * 1024 * 1024  # 100 MiB
    ping_interval_s: float = 20.0
    ping_timeout_s: float = 20.0
    log_level: str = "INFO"
    log_websockets_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
    # Per-component overrides, e.g. {"router": "DEBUG"} for campusnet.router.
    log_levels: dict[str, str] = field(default_factory=dict)


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "websockets_level" in log_table:
            mapped["log_websockets_level"] = log_table.get("websockets_level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        if "levels" in log_table:
            mapped["log_levels"] = log_table.get("levels")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None

    return replace(base, **updates) if updates else base


def apply_environment(
    base: RelayRuntimeConfig, environ: Mapping[str, str] | None = None
) -> RelayRuntimeConfig:
    """Apply HOST/PORT from the process environment (deployment convention)."""
    env = os.environ if environ is None else environ
    updates: dict[str, Any] = {}

    port = env.get("PORT")
    if port is not None and port.strip():
        try:
            updates["port"] = int(port.strip())
        except ValueError as e:
            raise ValueError(f"PORT must be an integer, got {port!r}") from e

    host = env.get("HOST")
    if host is not None and host.strip():
        updates["host"] = host.strip()

    return replace(base, **updates) if updates else base


def validate_config(cfg: RelayRuntimeConfig) -> RelayRuntimeConfig:
    if not isinstance(cfg.port, int) or isinstance(cfg.port, bool):
        raise ValueError(f"port must be an integer, got {cfg.port!r}")
    if not 0 <= cfg.port <= 65535:
        raise ValueError(f"port out of range: {cfg.port}")
    if not str(cfg.ws_path).startswith("/"):
        raise ValueError(f"ws_path must start with '/': {cfg.ws_path!r}")
    if cfg.duplicate_login not in DUPLICATE_LOGIN_POLICIES:
        raise ValueError(
            f"duplicate_login must be one of {', '.join(DUPLICATE_LOGIN_POLICIES)}; "
            f"got {cfg.duplicate_login!r}"
        )
    for name in ("rate_limit_msgs_per_minute", "max_chunk_chars", "max_frame_bytes"):
        v = getattr(cfg, name)
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise ValueError(f"{name} must be a non-negative integer, got {v!r}")
    if not isinstance(cfg.log_levels, dict):
        raise ValueError(f"logging.levels must be a table, got {cfg.log_levels!r}")
    unknown = sorted(set(cfg.log_levels) - set(COMPONENT_LOGGERS))
    if unknown:
        raise ValueError(
            f"unknown logging.levels component(s) {', '.join(unknown)}; "
            f"expected one of {', '.join(COMPONENT_LOGGERS)}"
        )
    return cfg
