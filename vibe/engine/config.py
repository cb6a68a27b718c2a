"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via VIBE_* env vars, or
with a YAML file (see ``yaml_config.py``).
"""
from __future__ import annotations

import logging
import os
import shutil
import sys
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def default_shell() -> str:
    """Shell binary used when none is configured."""
    if sys.platform == "win32":
        return "cmd.exe"
    return shutil.which("bash") or "/bin/sh"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in _TRUE_VALUES


@dataclass
class ServiceConfig:
    """Backend service configuration."""

    # Boundary transport
    host: str = "127.0.0.1"
    port: int = 0  # 0 = ephemeral port, reported on stdout at startup
    sse_queue_size: int = 5000
    sse_keepalive_seconds: float = 30.0

    # Terminal sessions
    default_cwd: str = field(default_factory=os.getcwd)
    shell: str = field(default_factory=default_shell)
    shell_args: list[str] = field(default_factory=list)
    # Grace period between SIGTERM and SIGKILL when destroying a session.
    terminate_grace_seconds: float = 1.0
    read_chunk_size: int = 4096

    # File operations
    # Fall back to copy + delete when a rename crosses devices (EXDEV).
    move_cross_device_fallback: bool = True

    # Settings store and logs live under this directory.
    state_dir: str = field(
        default_factory=lambda: os.path.join(os.path.expanduser("~"), ".vibe")
    )

    # Logging
    log_level: str = "INFO"

    @property
    def store_path(self) -> str:
        return os.path.join(self.state_dir, "store.json")

    @property
    def log_dir(self) -> str:
        return os.path.join(self.state_dir, "logs")

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load configuration from VIBE_* environment variables."""
        vibe_vars = {
            k: v for k, v in os.environ.items() if k.startswith("VIBE_")
        }
        if vibe_vars:
            logger.info(
                "ServiceConfig.from_env: VIBE_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(vibe_vars.items())),
            )
        else:
            logger.debug("ServiceConfig.from_env: no VIBE_* env vars set, using defaults")

        defaults = cls()
        shell_args_raw = os.getenv("VIBE_SHELL_ARGS")
        config = cls(
            host=os.getenv("VIBE_HOST", defaults.host),
            port=int(os.getenv("VIBE_PORT", str(defaults.port))),
            sse_queue_size=int(os.getenv(
                "VIBE_SSE_QUEUE_SIZE", str(defaults.sse_queue_size)
            )),
            sse_keepalive_seconds=float(os.getenv(
                "VIBE_SSE_KEEPALIVE", str(defaults.sse_keepalive_seconds)
            )),
            default_cwd=os.getenv("VIBE_DEFAULT_CWD", defaults.default_cwd),
            shell=os.getenv("VIBE_SHELL", defaults.shell),
            shell_args=(
                shell_args_raw.split() if shell_args_raw else list(defaults.shell_args)
            ),
            terminate_grace_seconds=float(os.getenv(
                "VIBE_TERMINATE_GRACE", str(defaults.terminate_grace_seconds)
            )),
            read_chunk_size=int(os.getenv(
                "VIBE_READ_CHUNK_SIZE", str(defaults.read_chunk_size)
            )),
            move_cross_device_fallback=_env_bool(
                "VIBE_MOVE_CROSS_DEVICE_FALLBACK",
                defaults.move_cross_device_fallback,
            ),
            state_dir=os.path.expanduser(
                os.getenv("VIBE_STATE_DIR", defaults.state_dir)
            ),
            log_level=os.getenv("VIBE_LOG_LEVEL", defaults.log_level).upper(),
        )
        logger.info(
            "ServiceConfig.from_env: host=%s port=%s shell=%s cwd=%s state_dir=%s",
            config.host, config.port, config.shell,
            config.default_cwd, config.state_dir,
        )
        return config
