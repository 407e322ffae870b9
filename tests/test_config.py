import argparse
import tomllib

import pytest

from campusnet.cli import _build_arg_parser, build_config, render_default_config
from campusnet.config import (
    RelayRuntimeConfig,
    apply_config_data,
    apply_environment,
    validate_config,
)


def test_defaults() -> None:
    cfg = RelayRuntimeConfig()
    assert cfg.port == 3000
    assert cfg.ws_path == "/ws"
    assert cfg.duplicate_login == "replace"
    assert validate_config(cfg) is cfg


def test_apply_config_data_reads_relay_and_logging_tables() -> None:
    data = {
        "relay": {"port": 4100, "duplicate_login": "reject", "config_path": "/elsewhere"},
        "logging": {"level": "DEBUG", "file": "", "websockets_level": "INFO"},
        "unknown_key": 1,
    }
    cfg = apply_config_data(RelayRuntimeConfig(config_path="/etc/campusnet.toml"), data)
    assert cfg.port == 4100
    assert cfg.duplicate_login == "reject"
    assert cfg.log_level == "DEBUG"
    assert cfg.log_websockets_level == "INFO"
    assert cfg.log_file is None
    assert cfg.config_path == "/etc/campusnet.toml"


def test_environment_overrides_port_and_host() -> None:
    cfg = apply_environment(RelayRuntimeConfig(port=4100), {"PORT": "8080", "HOST": "127.0.0.1"})
    assert cfg.port == 8080
    assert cfg.host == "127.0.0.1"

    assert apply_environment(RelayRuntimeConfig(), {"PORT": "  "}).port == 3000

    with pytest.raises(ValueError, match="PORT"):
        apply_environment(RelayRuntimeConfig(), {"PORT": "http"})


@pytest.mark.parametrize(
    "overrides",
    [
        {"port": 70000},
        {"ws_path": "ws"},
        {"duplicate_login": "ignore"},
        {"max_chunk_chars": -1},
        {"log_levels": {"storage": "DEBUG"}},
    ],
)
def test_validate_rejects_bad_values(overrides) -> None:
    with pytest.raises(ValueError):
        validate_config(RelayRuntimeConfig(**overrides))


def test_default_config_file_parses_back_to_defaults() -> None:
    data = tomllib.loads(render_default_config())
    assert data["relay"]["port"] == 3000
    assert apply_config_data(RelayRuntimeConfig(), data) == RelayRuntimeConfig()


def test_build_config_precedence(tmp_path) -> None:
    path = tmp_path / "campusnet.toml"
    path.write_text('[relay]\nport = 4100\nhost = "10.0.0.1"\nws_path = "/chat"\n', encoding="utf-8")

    args = _build_arg_parser().parse_args(["--config", str(path), "--host", "127.0.0.1"])
    cfg = build_config(args, environ={"PORT": "5000"})

    assert cfg.ws_path == "/chat"  # file
    assert cfg.port == 5000  # environment beats file
    assert cfg.host == "127.0.0.1"  # flag beats everything


def test_build_config_without_file(tmp_path) -> None:
    args = _build_arg_parser().parse_args(["--config", str(tmp_path / "missing.toml")])
    cfg = build_config(args, environ={})
    assert cfg.port == 3000
    assert isinstance(args, argparse.Namespace)


def test_component_log_levels_come_from_logging_levels_table() -> None:
    data = tomllib.loads('[logging]\nlevel = "INFO"\n\n[logging.levels]\nrouter = "DEBUG"\n')
    cfg = validate_config(apply_config_data(RelayRuntimeConfig(), data))
    assert cfg.log_levels == {"router": "DEBUG"}
