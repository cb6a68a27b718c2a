from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from vibe.app import build_config, build_parser, discover_config
from vibe.engine.config import ServiceConfig
from vibe.engine.yaml_config import load_yaml_config


def test_defaults() -> None:
    config = ServiceConfig()
    assert config.host == "127.0.0.1"
    assert config.port == 0
    assert config.terminate_grace_seconds == 1.0
    assert config.move_cross_device_fallback is True
    assert config.store_path == os.path.join(config.state_dir, "store.json")


def test_from_env_overrides(tmp_path: Path) -> None:
    env = {
        "VIBE_PORT": "8123",
        "VIBE_SHELL": "/bin/sh",
        "VIBE_SHELL_ARGS": "-i -l",
        "VIBE_TERMINATE_GRACE": "2.5",
        "VIBE_MOVE_CROSS_DEVICE_FALLBACK": "no",
        "VIBE_STATE_DIR": str(tmp_path),
        "VIBE_LOG_LEVEL": "debug",
    }
    with patch.dict(os.environ, env, clear=False):
        config = ServiceConfig.from_env()

    assert config.port == 8123
    assert config.shell == "/bin/sh"
    assert config.shell_args == ["-i", "-l"]
    assert config.terminate_grace_seconds == 2.5
    assert config.move_cross_device_fallback is False
    assert config.state_dir == str(tmp_path)
    assert config.log_level == "DEBUG"


def test_yaml_overlay_keeps_unset_fields(tmp_path: Path) -> None:
    path = tmp_path / "vibe.yaml"
    path.write_text(
        "server:\n  port: 9000\n"
        "terminal:\n  shell: /bin/zsh\n  shell_args: ['-i']\n  bogus: 1\n"
        "files:\n  move_cross_device_fallback: false\n"
        "log_level: warning\n"
        "unknown_section: {}\n",
        encoding="utf-8",
    )
    base = ServiceConfig(host="0.0.0.0", terminate_grace_seconds=3.0)

    config = load_yaml_config(path, base=base)

    assert config.port == 9000
    assert config.shell == "/bin/zsh"
    assert config.shell_args == ["-i"]
    assert config.move_cross_device_fallback is False
    assert config.log_level == "WARNING"
    assert config.host == "0.0.0.0"
    assert config.terminate_grace_seconds == 3.0


@pytest.mark.parametrize("raw, expected", [
    ('"false"', False),
    ("'no'", False),
    ('"0"', False),
    ('"true"', True),
    ("on", True),
    ("false", False),
])
def test_yaml_boolean_accepts_quoted_spellings(tmp_path: Path, raw: str, expected: bool) -> None:
    path = tmp_path / "vibe.yaml"
    path.write_text(f"files:\n  move_cross_device_fallback: {raw}\n", encoding="utf-8")

    config = load_yaml_config(path, base=ServiceConfig(move_cross_device_fallback=not expected))

    assert config.move_cross_device_fallback is expected


def test_yaml_boolean_rejects_garbage(tmp_path: Path) -> None:
    path = tmp_path / "vibe.yaml"
    path.write_text("files:\n  move_cross_device_fallback: sometimes\n", encoding="utf-8")
    with pytest.raises(ValueError, match="boolean"):
        load_yaml_config(path)


def test_yaml_must_be_a_mapping(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_yaml_config(path)


def test_yaml_parse_error_propagates(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("server: [unclosed\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(path)


def test_discover_config_prefers_explicit(tmp_path: Path) -> None:
    (tmp_path / ".vibe").mkdir()
    auto = tmp_path / ".vibe" / "vibe.yaml"
    auto.write_text("{}", encoding="utf-8")

    assert discover_config(None, tmp_path) == auto
    assert discover_config("/etc/other.yaml", tmp_path) == Path("/etc/other.yaml")
    assert discover_config(None, tmp_path / "elsewhere") is None


def test_cli_flags_override_yaml(tmp_path: Path) -> None:
    path = tmp_path / "vibe.yaml"
    path.write_text("server:\n  port: 9000\n", encoding="utf-8")
    args = build_parser().parse_args([
        "--config", str(path), "--port", "7000", "--cwd", str(tmp_path), "--log-level", "debug",
    ])

    with patch.dict(os.environ, {"VIBE_STATE_DIR": str(tmp_path)}, clear=False):
        config = build_config(args)

    assert config.port == 7000
    assert config.default_cwd == str(tmp_path)
    assert config.log_level == "DEBUG"
