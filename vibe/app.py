"""Vibe backend: main entry point for the privileged service process."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from vibe.engine.config import ServiceConfig
from vibe.engine.yaml_config import load_yaml_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(log_level: str, log_dir: str) -> Path:
    """Route the root logger to a rotating file plus stderr."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / "vibe-backend.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    # stdout is reserved for the {"port": N} handshake.
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def discover_config(explicit: str | None, cwd: Path) -> Path | None:
    """Return the YAML config to load: *explicit*, else ./.vibe/vibe.yaml."""
    if explicit:
        return Path(explicit).expanduser()
    candidate = cwd / ".vibe" / "vibe.yaml"
    return candidate if candidate.exists() else None


def build_config(args: argparse.Namespace) -> ServiceConfig:
    """Environment first, then the YAML overlay, then CLI flags."""
    config = ServiceConfig.from_env()
    config_path = discover_config(args.config, Path.cwd())
    if config_path is not None:
        config = load_yaml_config(config_path, base=config)
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.cwd:
        config.default_cwd = os.path.abspath(os.path.expanduser(args.cwd))
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vibe-backend",
        description="Vibe editor backend: terminals, files and watches over HTTP+SSE",
    )
    parser.add_argument(
        "--host", metavar="HOST",
        help="Interface to bind (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Server port (0=random available port)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./.vibe/vibe.yaml when present)",
    )
    parser.add_argument(
        "--cwd", metavar="DIR",
        help="Default working directory for new terminals",
    )
    parser.add_argument(
        "--log-level", metavar="LEVEL",
        help="Logging level (default: INFO, or VIBE_LOG_LEVEL)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    from vibe.transport.server import BackendServer

    args = build_parser().parse_args(argv)
    try:
        config = build_config(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"vibe-backend: invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)

    log_file = configure_logging(config.log_level, config.log_dir)
    logger.info(
        "Starting backend host=%s port=%s cwd=%s shell=%s log=%s",
        config.host, config.port, config.default_cwd, config.shell, log_file,
    )

    server = BackendServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    sys.exit(0)


if __name__ == "__main__":
    main()
