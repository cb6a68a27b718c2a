"""Exception hierarchy for the backend services.

Each failure mode has its own class. ``http_status`` is the status the
boundary transport answers with when the error reaches a caller.
"""
from __future__ import annotations


class BackendError(Exception):
    """Base exception for all backend service errors."""

    http_status: int = 500


class SpawnFailure(BackendError):
    """A shell process could not be started for a session."""

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Failed to start terminal {session_id}: {reason}")


class UnknownSessionError(BackendError):
    """No live session is registered under the given id."""

    http_status = 404

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Terminal {session_id} not found")


class FileSystemError(BackendError):
    """A filesystem operation failed."""

    http_status = 422

    def __init__(
        self,
        operation: str,
        path: str,
        reason: str,
        dest: str | None = None,
    ):
        self.operation = operation
        self.path = path
        self.dest = dest
        self.reason = reason
        if dest is not None:
            target = f"from {path} to {dest}"
        else:
            target = path
        super().__init__(f"Failed to {operation} {target}: {reason}")


class WatchError(BackendError):
    """A filesystem watch could not be established."""

    http_status = 422

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to watch {path}: {reason}")


class UnknownCommandError(BackendError):
    """The boundary received a command name it does not know."""

    http_status = 404

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown command: {name}")


class InvalidArgumentsError(BackendError):
    """A command was invoked with missing or malformed arguments."""

    http_status = 400

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Invalid arguments for {command}: {reason}")
