from __future__ import annotations

import pytest

from vibe.engine.errors import InvalidArgumentsError, UnknownCommandError
from vibe.transport.commands import (
    COMMAND_ARGS,
    Command,
    bind_args,
    describe_commands,
    parse_command,
)


def test_every_command_has_a_schema() -> None:
    assert set(COMMAND_ARGS) == set(Command)


def test_parse_unknown_command() -> None:
    with pytest.raises(UnknownCommandError) as excinfo:
        parse_command("terminal-explode")
    assert excinfo.value.http_status == 404


def test_positional_and_named_args_bind_the_same() -> None:
    positional = bind_args(Command.FILE_COPY, ["/a", "/b"])
    named = bind_args(Command.FILE_COPY, {"src": "/a", "dst": "/b"})
    assert positional == named == {"src": "/a", "dst": "/b"}


def test_wire_names_map_to_keyword_names() -> None:
    assert bind_args(Command.TERMINAL_WRITE, ["t1", "ls\n"]) == {"session_id": "t1", "data": "ls\n"}
    assert bind_args(Command.FILE_STOP_WATCHING, {"watcherId": "w1"}) == {"watcher_id": "w1"}


def test_optional_cwd_defaults_to_none() -> None:
    assert bind_args(Command.TERMINAL_CREATE, ["t1"]) == {"session_id": "t1", "cwd": None}
    assert bind_args(Command.TERMINAL_CREATE, ["t1", None]) == {"session_id": "t1", "cwd": None}


def test_missing_required_argument() -> None:
    with pytest.raises(InvalidArgumentsError, match="missing argument 'data'"):
        bind_args(Command.TERMINAL_WRITE, ["t1"])


def test_too_many_positional_arguments() -> None:
    with pytest.raises(InvalidArgumentsError):
        bind_args(Command.FILE_READ, ["/a", "/b"])


def test_unexpected_named_argument() -> None:
    with pytest.raises(InvalidArgumentsError, match="unexpected"):
        bind_args(Command.FILE_READ, {"path": "/a", "mode": "r"})


@pytest.mark.parametrize("cols", [0, -1, 1.5, "80", True])
def test_resize_requires_positive_integers(cols) -> None:
    with pytest.raises(InvalidArgumentsError, match="positive integer"):
        bind_args(Command.TERMINAL_RESIZE, ["t1", cols, 24])


def test_empty_path_is_rejected_but_empty_content_is_allowed() -> None:
    with pytest.raises(InvalidArgumentsError):
        bind_args(Command.FILE_READ, [""])
    assert bind_args(Command.FILE_WRITE, ["/f", ""]) == {"path": "/f", "content": ""}


def test_store_value_accepts_any_json() -> None:
    assert bind_args(Command.STORE_SET, ["k", {"nested": [1, 2]}])["value"] == {"nested": [1, 2]}
    assert bind_args(Command.STORE_SET, ["k", None])["value"] is None


def test_args_must_be_list_or_object() -> None:
    with pytest.raises(InvalidArgumentsError):
        bind_args(Command.FILE_READ, "/a")


def test_describe_commands_lists_wire_names() -> None:
    described = {c["name"]: c for c in describe_commands()}
    assert len(described) == len(Command)
    assert described["terminal-resize"]["args"] == ["id", "cols", "rows"]
    assert described["terminal-create"]["optional"] == ["cwd"]
