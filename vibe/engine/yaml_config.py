"""YAML configuration loader.

Overlays a YAML file onto a ServiceConfig (usually the one built from
the environment). Keys that are absent keep their current value.

Example YAML:
    server:
      host: 127.0.0.1
      port: 8765
      sse_queue_size: 5000
      sse_keepalive_seconds: 30

    terminal:
      shell: /bin/zsh
      shell_args: ["-i"]
      default_cwd: ~/projects
      terminate_grace_seconds: 1.5

    files:
      move_cross_device_fallback: true

    state_dir: ~/.vibe
    log_level: DEBUG
"""
from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import _TRUE_VALUES, ServiceConfig

logger = logging.getLogger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}


def _yaml_bool(value: Any) -> bool:
    """Accept real YAML booleans and the quoted spellings the env vars use."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


# section -> {yaml key: (field name, coercion)}
_SECTIONS: dict[str, dict[str, tuple[str, Any]]] = {
    "server": {
        "host": ("host", str),
        "port": ("port", int),
        "sse_queue_size": ("sse_queue_size", int),
        "sse_keepalive_seconds": ("sse_keepalive_seconds", float),
    },
    "terminal": {
        "shell": ("shell", str),
        "shell_args": ("shell_args", lambda v: [str(a) for a in v]),
        "default_cwd": ("default_cwd", lambda v: os.path.expanduser(str(v))),
        "terminate_grace_seconds": ("terminate_grace_seconds", float),
        "read_chunk_size": ("read_chunk_size", int),
    },
    "files": {
        "move_cross_device_fallback": ("move_cross_device_fallback", _yaml_bool),
    },
}

_TOP_LEVEL: dict[str, tuple[str, Any]] = {
    "state_dir": ("state_dir", lambda v: os.path.expanduser(str(v))),
    "log_level": ("log_level", lambda v: str(v).upper()),
}


def load_yaml_config(
    path: str | Path,
    base: ServiceConfig | None = None,
) -> ServiceConfig:
    """Load a YAML config file and overlay it on *base*."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping at top level")

    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _SECTIONS:
            section = value or {}
            if not isinstance(section, dict):
                raise ValueError(f"Config section '{key}' in {path} must be a mapping")
            known = _SECTIONS[key]
            for sub_key, sub_value in section.items():
                if sub_key not in known:
                    logger.warning(
                        "load_yaml_config: ignoring unknown key %s.%s in %s",
                        key, sub_key, path,
                    )
                    continue
                field_name, coerce = known[sub_key]
                overrides[field_name] = coerce(sub_value)
        elif key in _TOP_LEVEL:
            field_name, coerce = _TOP_LEVEL[key]
            overrides[field_name] = coerce(value)
        else:
            logger.warning(
                "load_yaml_config: ignoring unknown section %s in %s", key, path,
            )

    logger.info(
        "Parsed YAML config %s, overrides: %s",
        path.name, ", ".join(sorted(overrides)) if overrides else "(none)",
    )
    return replace(base or ServiceConfig(), **overrides)
