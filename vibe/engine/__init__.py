"""Backend engine: configuration, errors and the terminal process bridge."""
from .config import ServiceConfig
from .errors import (
    BackendError,
    FileSystemError,
    InvalidArgumentsError,
    SpawnFailure,
    UnknownCommandError,
    UnknownSessionError,
    WatchError,
)
from .session_registry import SessionRegistry
from .terminal import SessionStatus, TerminalSession

__all__ = [
    "ServiceConfig",
    "BackendError",
    "FileSystemError",
    "InvalidArgumentsError",
    "SpawnFailure",
    "UnknownCommandError",
    "UnknownSessionError",
    "WatchError",
    "SessionRegistry",
    "SessionStatus",
    "TerminalSession",
]
