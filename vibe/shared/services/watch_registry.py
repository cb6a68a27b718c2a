"""Watch registry: recursive filesystem watches keyed by watcher id.

Each watch runs its own watchdog observer thread. Raw notifications are
translated to ``{watcherId, eventType, path}`` records and marshalled
onto the event loop, where ``_dispatch`` drops anything whose watcher id
is no longer registered. ``stop_watching`` removes the id before it
releases the observer, so a late notification is never delivered under
an id the caller already considers stopped.
"""
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from vibe.adapters.events import (
    WATCH_ADD,
    WATCH_ADD_DIR,
    WATCH_CHANGE,
    WATCH_UNLINK,
    WATCH_UNLINK_DIR,
    Publish,
    WatchEvent,
)
from vibe.engine.errors import WatchError
from vibe.shared.services.file_ops import normalize_path

logger = logging.getLogger(__name__)

# How long to wait for an observer thread to finish when releasing it.
_OBSERVER_JOIN_TIMEOUT_SECONDS = 5.0

Change = tuple[str, str]  # (event type, path)


def translate_event(event: FileSystemEvent) -> list[Change]:
    """Map one watchdog event to zero or more watch event records.

    Directory "modified" notifications (a child changed) and open/close
    notifications are not reported. A move becomes an unlink of the
    source followed by an add of the destination.
    """
    added = WATCH_ADD_DIR if event.is_directory else WATCH_ADD
    removed = WATCH_UNLINK_DIR if event.is_directory else WATCH_UNLINK
    src = os.fsdecode(event.src_path)
    if event.event_type == EVENT_TYPE_CREATED:
        return [(added, src)]
    if event.event_type == EVENT_TYPE_MODIFIED:
        return [] if event.is_directory else [(WATCH_CHANGE, src)]
    if event.event_type == EVENT_TYPE_DELETED:
        return [(removed, src)]
    if event.event_type == EVENT_TYPE_MOVED:
        return [(removed, src), (added, os.fsdecode(event.dest_path))]
    return []


class _ForwardingHandler(FileSystemEventHandler):
    """Runs on the observer thread; hands changes to the event loop."""

    def __init__(
        self,
        watcher_id: str,
        loop: asyncio.AbstractEventLoop,
        deliver: Callable[[str, list[Change]], None],
    ) -> None:
        super().__init__()
        self._watcher_id = watcher_id
        self._loop = loop
        self._deliver = deliver

    def on_any_event(self, event: FileSystemEvent) -> None:
        changes = translate_event(event)
        if not changes:
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, self._watcher_id, changes)
        except RuntimeError:
            # Event loop already closed; nobody is left to receive it.
            logger.debug("Dropping watch event for %s: event loop closed", self._watcher_id)


@dataclass
class WatchHandle:
    """A managed filesystem subscription plus its bookkeeping."""

    watcher_id: str
    path: str
    observer: Any = field(repr=False)


class WatchRegistry:
    """Maps watcher ids to active filesystem watches."""

    def __init__(
        self,
        publish: Publish,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self._publish = publish
        self._observer_factory = observer_factory
        self._watches: dict[str, WatchHandle] = {}

    def __len__(self) -> int:
        return len(self._watches)

    def __contains__(self, watcher_id: object) -> bool:
        return watcher_id in self._watches

    def list_watches(self) -> list[dict[str, str]]:
        return [
            {"watcherId": handle.watcher_id, "path": handle.path}
            for handle in self._watches.values()
        ]

    async def watch_directory(self, path: str) -> str:
        """Start a recursive watch on *path* and return its watcher id."""
        root = normalize_path(path)
        if not os.path.isdir(root):
            raise WatchError(root, "not an existing directory")

        watcher_id = uuid.uuid4().hex
        handler = _ForwardingHandler(watcher_id, asyncio.get_running_loop(), self._dispatch)
        observer = self._observer_factory()
        try:
            observer.schedule(handler, root, recursive=True)
            # Recursive inotify setup walks the tree; keep it off the loop.
            await asyncio.to_thread(observer.start)
        except OSError as exc:
            raise WatchError(root, exc.strerror or str(exc)) from exc

        self._watches[watcher_id] = WatchHandle(watcher_id=watcher_id, path=root, observer=observer)
        logger.info("Watching %s watcher=%s", root, watcher_id)
        return watcher_id

    async def stop_watching(self, watcher_id: str) -> None:
        handle = self._watches.pop(watcher_id, None)
        if handle is None:
            logger.debug("stop_watching: unknown watcher %s", watcher_id)
            return
        logger.info("Stopping watch %s on %s", watcher_id, handle.path)
        await asyncio.to_thread(self._release, handle)

    async def shutdown(self) -> None:
        handles = list(self._watches.values())
        self._watches.clear()
        if handles:
            logger.info("Stopping %d filesystem watch(es)", len(handles))
            await asyncio.gather(*(asyncio.to_thread(self._release, h) for h in handles))

    def _dispatch(self, watcher_id: str, changes: list[Change]) -> None:
        if watcher_id not in self._watches:
            return
        for event_type, path in changes:
            self._publish(WatchEvent(watcher_id=watcher_id, event_type=event_type, path=path))

    @staticmethod
    def _release(handle: WatchHandle) -> None:
        handle.observer.stop()
        handle.observer.join(timeout=_OBSERVER_JOIN_TIMEOUT_SECONDS)
        if handle.observer.is_alive():
            logger.warning("Observer for watcher %s did not stop in time", handle.watcher_id)
