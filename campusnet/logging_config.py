"""Logging setup for campusnetd: one handler set on the root logger, levels per component."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig
from .constants import COMPONENT_LOGGERS

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    """Level from a name ("debug", "WARN") or number; ``default`` when unusable."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value

    text = str(value).strip().upper()
    if not text:
        return default
    if text.isdigit():
        return int(text)

    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default


def _log_file_path(cfg: RelayRuntimeConfig, override_file: str | None) -> Path | None:
    # An explicit empty override turns file logging off even when the config sets one.
    raw = cfg.log_file if override_file is None else override_file
    if raw is None or not str(raw).strip():
        return None
    return Path(os.path.expanduser(str(raw)))


def _build_handlers(cfg: RelayRuntimeConfig, log_path: Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
        try:
            os.chmod(log_path, 0o600)
        except OSError:
            pass

    formatter = logging.Formatter(
        fmt=str(cfg.log_format).strip() or DEFAULT_FORMAT,
        datefmt=cfg.log_datefmt or None,
    )
    for h in handlers:
        h.setFormatter(formatter)
    return handlers


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> dict[str, int]:
    """Install handlers and levels from ``cfg``; returns the effective levels by logger name.

    The root logger gets the relay level. ``websockets`` and each
    ``campusnet.<component>`` logger named in ``cfg.log_levels`` get their own
    level; components not named inherit the relay level. Handlers already on
    the root logger are replaced, so calling this twice is harmless.
    """
    level = parse_level(override_level or cfg.log_level, logging.INFO)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in _build_handlers(cfg, _log_file_path(cfg, override_file)):
        root.addHandler(h)
    root.setLevel(level)

    levels: dict[str, int] = {
        "campusnet": level,
        "websockets": parse_level(cfg.log_websockets_level, logging.WARNING),
    }
    for name in COMPONENT_LOGGERS:
        component_level = cfg.log_levels.get(name)
        levels[f"campusnet.{name}"] = (
            parse_level(component_level, level) if component_level is not None else logging.NOTSET
        )

    for name, lvl in levels.items():
        logging.getLogger(name).setLevel(lvl)

    logging.captureWarnings(True)
    return levels
