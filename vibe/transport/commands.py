"""Closed command table for the request/response channel.

Every command the UI may invoke is a ``Command`` member with one
argument schema. ``bind_args`` turns a request's ``args`` (positional
list or mapping by name) into validated keyword arguments; anything it
cannot bind raises InvalidArgumentsError before a handler runs.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from vibe.engine.errors import InvalidArgumentsError, UnknownCommandError


class Command(str, Enum):
    TERMINAL_CREATE = "terminal-create"
    TERMINAL_WRITE = "terminal-write"
    TERMINAL_RESIZE = "terminal-resize"
    TERMINAL_DESTROY = "terminal-destroy"
    FILE_READ = "file-read"
    FILE_WRITE = "file-write"
    FILE_DELETE = "file-delete"
    FILE_CREATE_DIRECTORY = "file-create-directory"
    FILE_LIST_DIRECTORY = "file-list-directory"
    FILE_COPY = "file-copy"
    FILE_MOVE = "file-move"
    FILE_EXISTS = "file-exists"
    FILE_WATCH_DIRECTORY = "file-watch-directory"
    FILE_STOP_WATCHING = "file-stop-watching"
    STORE_GET = "store-get"
    STORE_SET = "store-set"
    STORE_DELETE = "store-delete"


@dataclass(frozen=True)
class Arg:
    """One argument slot: wire name, keyword name, kind and optionality.

    ``kind`` is one of ``"str"``, ``"count"`` (positive int) or ``"any"``.
    """

    wire: str
    name: str
    kind: str = "str"
    required: bool = True


def _a(wire: str, name: str | None = None, kind: str = "str", required: bool = True) -> Arg:
    return Arg(wire=wire, name=name or wire, kind=kind, required=required)


COMMAND_ARGS: dict[Command, tuple[Arg, ...]] = {
    Command.TERMINAL_CREATE: (_a("id", "session_id"), _a("cwd", required=False)),
    Command.TERMINAL_WRITE: (_a("id", "session_id"), _a("data")),
    Command.TERMINAL_RESIZE: (
        _a("id", "session_id"),
        _a("cols", kind="count"),
        _a("rows", kind="count"),
    ),
    Command.TERMINAL_DESTROY: (_a("id", "session_id"),),
    Command.FILE_READ: (_a("path"),),
    Command.FILE_WRITE: (_a("path"), _a("content")),
    Command.FILE_DELETE: (_a("path"),),
    Command.FILE_CREATE_DIRECTORY: (_a("path"),),
    Command.FILE_LIST_DIRECTORY: (_a("path"),),
    Command.FILE_COPY: (_a("src"), _a("dst")),
    Command.FILE_MOVE: (_a("src"), _a("dst")),
    Command.FILE_EXISTS: (_a("path"),),
    Command.FILE_WATCH_DIRECTORY: (_a("path"),),
    Command.FILE_STOP_WATCHING: (_a("watcherId", "watcher_id"),),
    Command.STORE_GET: (_a("key"),),
    Command.STORE_SET: (_a("key"), _a("value", kind="any")),
    Command.STORE_DELETE: (_a("key"),),
}


def parse_command(name: str) -> Command:
    try:
        return Command(name)
    except ValueError:
        raise UnknownCommandError(name) from None


def describe_commands() -> list[dict[str, Any]]:
    """Command names with their wire argument names, in table order."""
    return [
        {
            "name": command.value,
            "args": [arg.wire for arg in COMMAND_ARGS[command]],
            "optional": [arg.wire for arg in COMMAND_ARGS[command] if not arg.required],
        }
        for command in Command
    ]


def bind_args(command: Command, raw: Any) -> dict[str, Any]:
    """Validate *raw* against the command's schema and return kwargs."""
    schema = COMMAND_ARGS[command]
    if raw is None:
        raw = []
    if isinstance(raw, list):
        if len(raw) > len(schema):
            raise InvalidArgumentsError(
                command.value,
                f"expected at most {len(schema)} argument(s), got {len(raw)}",
            )
        supplied = {arg.wire: value for arg, value in zip(schema, raw)}
    elif isinstance(raw, dict):
        known = {arg.wire for arg in schema}
        unexpected = sorted(set(raw) - known)
        if unexpected:
            raise InvalidArgumentsError(
                command.value, f"unexpected argument(s): {', '.join(unexpected)}",
            )
        supplied = dict(raw)
    else:
        raise InvalidArgumentsError(command.value, "args must be a list or an object")

    bound: dict[str, Any] = {}
    for arg in schema:
        if arg.wire not in supplied or (supplied[arg.wire] is None and arg.kind != "any"):
            if arg.required:
                raise InvalidArgumentsError(command.value, f"missing argument '{arg.wire}'")
            bound[arg.name] = None
            continue
        bound[arg.name] = _coerce(command, arg, supplied[arg.wire])
    return bound


def _coerce(command: Command, arg: Arg, value: Any) -> Any:
    if arg.kind == "any":
        return value
    if arg.kind == "count":
        # bool is an int subclass; reject it explicitly.
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InvalidArgumentsError(
                command.value, f"'{arg.wire}' must be a positive integer",
            )
        return value
    if not isinstance(value, str):
        raise InvalidArgumentsError(command.value, f"'{arg.wire}' must be a string")
    if arg.wire != "data" and arg.wire != "content" and not value:
        raise InvalidArgumentsError(command.value, f"'{arg.wire}' must not be empty")
    return value
