from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import tomlkit

from .config import (
    RelayRuntimeConfig,
    apply_config_data,
    apply_environment,
    load_toml,
    validate_config,
)
from .constants import COMPONENT_LOGGERS, DUPLICATE_LOGIN_POLICIES
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService
from .util import expand_path


def render_default_config(cfg: RelayRuntimeConfig | None = None) -> str:
    cfg = cfg or RelayRuntimeConfig()

    doc = tomlkit.document()
    doc.add(tomlkit.comment("CampusNet relay configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("Precedence: built-in defaults < this file < HOST/PORT environment < CLI flags."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()
    relay.add(tomlkit.comment("Listen address. The PORT and HOST environment variables override these."))
    relay.add("host", cfg.host)
    relay.add("port", cfg.port)
    relay.add(tomlkit.comment("WebSocket endpoint path; handshakes on other paths get 404."))
    relay.add("ws_path", cfg.ws_path)
    relay.add("server_name", cfg.server_name)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("What happens when a user id that is already online logs in again:"))
    relay.add(tomlkit.comment('  "replace": the older connection is told and closed, the new one wins'))
    relay.add(tomlkit.comment('  "reject":  the new login gets loginAck ok=false reason=userId_in_use'))
    relay.add("duplicate_login", cfg.duplicate_login)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Limits (0 disables)."))
    relay.add(tomlkit.comment("max_chunk_chars caps the dataBase64 length of a single fileChunk."))
    relay.add("rate_limit_msgs_per_minute", cfg.rate_limit_msgs_per_minute)
    relay.add("max_chunk_chars", cfg.max_chunk_chars)
    relay.add("max_frame_bytes", cfg.max_frame_bytes)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("WebSocket keepalive pings (0 disables)."))
    relay.add("ping_interval_s", cfg.ping_interval_s)
    relay.add("ping_timeout_s", cfg.ping_timeout_s)
    doc.add("relay", relay)

    log = tomlkit.table()
    log.add("level", cfg.log_level)
    log.add(tomlkit.comment("Level for the websockets library logger."))
    log.add("websockets_level", cfg.log_websockets_level)
    log.add(tomlkit.comment("Log to stderr (systemd/journald friendly)."))
    log.add("console", cfg.log_console)
    log.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    log.add("file", cfg.log_file or "")
    log.add("format", cfg.log_format)
    log.add("datefmt", cfg.log_datefmt or "")
    log.add(tomlkit.comment("Per-component levels for campusnet.<name> loggers, e.g."))
    log.add(tomlkit.comment('  levels = { router = "DEBUG", delivery = "WARNING" }'))
    log.add(tomlkit.comment("Components: " + ", ".join(COMPONENT_LOGGERS) + ". Unlisted ones follow level."))
    doc.add("logging", log)

    return tomlkit.dumps(doc)


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(render_default_config())
    try:
        os.chmod(config_path, 0o600)
    except Exception:
        pass


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="campusnetd", description="Run the CampusNet message relay")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (read if it exists)",
    )
    p.add_argument(
        "--init-config",
        action="store_true",
        help="Write a default config file to --config and exit",
    )

    p.add_argument("--host", default=None, help="Listen host (default: 0.0.0.0, env HOST)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 3000, env PORT)")
    p.add_argument("--ws-path", default=None, help="WebSocket path (default: /ws)")

    p.add_argument(
        "--duplicate-login",
        choices=DUPLICATE_LOGIN_POLICIES,
        default=None,
        help="Policy when a user id that is already online logs in again",
    )
    p.add_argument(
        "--rate-limit-msgs-per-minute",
        type=int,
        default=None,
        help="Per-connection message rate limit (0 disables)",
    )
    p.add_argument(
        "--max-chunk-chars",
        type=int,
        default=None,
        help="Maximum dataBase64 length per fileChunk (0 disables)",
    )
    p.add_argument(
        "--max-frame-bytes",
        type=int,
        default=None,
        help="Maximum inbound WebSocket frame size in bytes (0 disables)",
    )

    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="WebSocket keepalive ping interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close the connection if a ping is not answered within this many seconds (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace, environ=None) -> RelayRuntimeConfig:
    config_path = expand_path(str(args.config))
    cfg = RelayRuntimeConfig(config_path=config_path)

    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    cfg = apply_environment(cfg, environ)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.ws_path is not None:
        cfg = replace(cfg, ws_path=str(args.ws_path))

    if args.duplicate_login is not None:
        cfg = replace(cfg, duplicate_login=str(args.duplicate_login))
    if args.rate_limit_msgs_per_minute is not None:
        cfg = replace(cfg, rate_limit_msgs_per_minute=int(args.rate_limit_msgs_per_minute))
    if args.max_chunk_chars is not None:
        cfg = replace(cfg, max_chunk_chars=int(args.max_chunk_chars))
    if args.max_frame_bytes is not None:
        cfg = replace(cfg, max_frame_bytes=int(args.max_frame_bytes))

    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return validate_config(cfg)


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if args.init_config:
        config_path = expand_path(str(args.config))
        if os.path.exists(config_path):
            print(f"Config already exists: {config_path}", file=sys.stderr)
            raise SystemExit(1)
        _write_default_config(config_path)
        print(f"Created default config: {config_path}", file=sys.stderr)
        raise SystemExit(0)

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        print(f"campusnetd: {e}", file=sys.stderr)
        raise SystemExit(2)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
