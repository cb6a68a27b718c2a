"""Event types pushed from the backend to the UI.

Each event is a typed dataclass. ``event_to_dict`` produces the JSON
payload sent on the event stream; ``dict_to_event`` parses it back on
the receiving side.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

TERMINAL_DATA = "terminal:data"
TERMINAL_EXIT = "terminal:exit"
WATCH_EVENT = "watch:event"

EVENT_KINDS: tuple[str, ...] = (TERMINAL_DATA, TERMINAL_EXIT, WATCH_EVENT)

# Low-level filesystem change types reported in WatchEvent.event_type.
WATCH_ADD = "add"
WATCH_CHANGE = "change"
WATCH_UNLINK = "unlink"
WATCH_ADD_DIR = "addDir"
WATCH_UNLINK_DIR = "unlinkDir"

WATCH_EVENT_TYPES: tuple[str, ...] = (WATCH_ADD, WATCH_CHANGE, WATCH_UNLINK, WATCH_ADD_DIR, WATCH_UNLINK_DIR)


@dataclass
class BackendEvent:
    """Base event pushed over the event stream."""
    kind: str = ""


@dataclass
class TerminalData(BackendEvent):
    kind: str = TERMINAL_DATA
    id: str = ""
    data: str = ""


@dataclass
class TerminalExit(BackendEvent):
    kind: str = TERMINAL_EXIT
    id: str = ""
    exit_code: int | None = None


@dataclass
class WatchEvent(BackendEvent):
    kind: str = WATCH_EVENT
    watcher_id: str = ""
    event_type: str = ""
    path: str = ""


# Sink that producers hand events to (normally EventBus.publish).
Publish = Callable[["BackendEvent"], Any]


_EVENT_MAP: dict[str, type[BackendEvent]] = {
    TERMINAL_DATA: TerminalData,
    TERMINAL_EXIT: TerminalExit,
    WATCH_EVENT: WatchEvent,
}

# Python field name -> wire name
_WIRE_NAMES: dict[str, str] = {
    "exit_code": "exitCode",
    "watcher_id": "watcherId",
    "event_type": "eventType",
}
_FIELD_NAMES: dict[str, str] = {v: k for k, v in _WIRE_NAMES.items()}


def event_to_dict(event: BackendEvent) -> dict[str, Any]:
    """Convert a typed event to its wire payload (without the kind)."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        if f == "kind":
            continue
        d[_WIRE_NAMES.get(f, f)] = getattr(event, f)
    return d


def dict_to_event(kind: str, data: dict[str, Any]) -> BackendEvent:
    """Convert a wire payload back to a typed event."""
    cls = _EVENT_MAP.get(kind)
    if cls is None:
        return BackendEvent(kind=kind)
    valid_fields = set(cls.__dataclass_fields__) - {"kind"}
    filtered: dict[str, Any] = {}
    for key, value in data.items():
        name = _FIELD_NAMES.get(key, key)
        if name in valid_fields:
            filtered[name] = value
    return cls(**filtered)
