"""Client for the backend boundary, used by the UI side.

``invoke`` sends one command and waits for its single response. Events
arrive independently on one SSE connection read by a background task,
which hands each event to the listeners registered for its kind at the
moment it is delivered.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from vibe.adapters.events import BackendEvent, dict_to_event
from vibe.transport.commands import Command

logger = logging.getLogger(__name__)

Listener = Callable[[BackendEvent], Any]


class CommandError(Exception):
    """A command was rejected or failed on the backend."""

    def __init__(self, command: str, message: str, kind: str = "BackendError", status: int = 500):
        self.command = command
        self.kind = kind
        self.status = status
        super().__init__(message)


class BackendClient:
    def __init__(self, base_url: str, *, session: aiohttp.ClientSession | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._listeners: dict[str, list[Listener]] = {}
        self._reader: asyncio.Task[None] | None = None
        self._connected = asyncio.Event()

    async def __aenter__(self) -> BackendClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    async def connect(self, timeout: float = 10.0) -> None:
        """Open the event stream and wait for its ``connected`` frame."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_events())
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            except aiohttp.ClientError as exc:
                logger.debug("Event stream reader ended with error: %s", exc)
            self._reader = None
        self._connected.clear()
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ── Event listeners ──

    def on(self, kind: str, listener: Listener) -> None:
        self._listeners.setdefault(kind, []).append(listener)

    def off(self, kind: str, listener: Listener) -> None:
        listeners = self._listeners.get(kind)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            pass

    def remove_all_listeners(self, kind: str | None = None) -> None:
        if kind is None:
            self._listeners.clear()
        else:
            self._listeners.pop(kind, None)

    # ── Commands ──

    async def invoke(self, command: Command | str, *args: Any) -> Any:
        name = command.value if isinstance(command, Command) else command
        if self._session is None:
            self._session = aiohttp.ClientSession()
        url = f"{self._base_url}/invoke/{name}"
        async with self._session.post(url, json={"args": list(args)}) as resp:
            try:
                body = await resp.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError):
                body = None
            if resp.status != 200 or not isinstance(body, dict) or "result" not in body:
                message = body.get("error") if isinstance(body, dict) else None
                kind = body.get("kind") if isinstance(body, dict) else None
                raise CommandError(
                    name,
                    message or f"{name} failed with HTTP {resp.status}",
                    kind=kind or "BackendError",
                    status=resp.status,
                )
            return body["result"]

    async def terminal_create(self, session_id: str, cwd: str | None = None) -> dict[str, Any]:
        return await self.invoke(Command.TERMINAL_CREATE, session_id, cwd)

    async def terminal_write(self, session_id: str, data: str) -> bool:
        return await self.invoke(Command.TERMINAL_WRITE, session_id, data)

    async def terminal_resize(self, session_id: str, cols: int, rows: int) -> bool:
        return await self.invoke(Command.TERMINAL_RESIZE, session_id, cols, rows)

    async def terminal_destroy(self, session_id: str) -> bool:
        return await self.invoke(Command.TERMINAL_DESTROY, session_id)

    async def read_file(self, path: str) -> str:
        return await self.invoke(Command.FILE_READ, path)

    async def write_file(self, path: str, content: str) -> None:
        await self.invoke(Command.FILE_WRITE, path, content)

    async def delete_file(self, path: str) -> None:
        await self.invoke(Command.FILE_DELETE, path)

    async def create_directory(self, path: str) -> None:
        await self.invoke(Command.FILE_CREATE_DIRECTORY, path)

    async def list_directory(self, path: str) -> list[dict[str, Any]]:
        return await self.invoke(Command.FILE_LIST_DIRECTORY, path)

    async def copy_file(self, src: str, dst: str) -> None:
        await self.invoke(Command.FILE_COPY, src, dst)

    async def move_file(self, src: str, dst: str) -> None:
        await self.invoke(Command.FILE_MOVE, src, dst)

    async def exists(self, path: str) -> bool:
        return await self.invoke(Command.FILE_EXISTS, path)

    async def watch_directory(self, path: str) -> str:
        return await self.invoke(Command.FILE_WATCH_DIRECTORY, path)

    async def stop_watching(self, watcher_id: str) -> None:
        await self.invoke(Command.FILE_STOP_WATCHING, watcher_id)

    async def store_get(self, key: str) -> Any:
        return await self.invoke(Command.STORE_GET, key)

    async def store_set(self, key: str, value: Any) -> None:
        await self.invoke(Command.STORE_SET, key, value)

    async def store_delete(self, key: str) -> None:
        await self.invoke(Command.STORE_DELETE, key)

    # ── Event stream ──

    async def _read_events(self) -> None:
        assert self._session is not None
        timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        async with self._session.get(f"{self._base_url}/events", timeout=timeout) as resp:
            resp.raise_for_status()
            event_name: str | None = None
            data_lines: list[str] = []
            async for raw in resp.content:
                line = raw.decode("utf-8").rstrip("\r\n")
                if line == "":
                    if event_name is not None:
                        await self._deliver(event_name, "\n".join(data_lines))
                    event_name = None
                    data_lines = []
                elif line.startswith(":"):
                    continue
                elif line.startswith("event:"):
                    event_name = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[len("data:"):].lstrip())
        logger.info("Event stream from %s ended", self._base_url)

    async def _deliver(self, kind: str, raw: str) -> None:
        if kind == "connected":
            self._connected.set()
            return
        try:
            payload = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            logger.warning("Discarding malformed %s event: %r", kind, raw)
            return
        event = dict_to_event(kind, payload)
        for listener in list(self._listeners.get(kind, ())):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener for %s failed", kind)
