"""HTTP + SSE boundary between the UI process and the backend services.

The UI invokes named commands with ``POST /invoke/{command}`` and
listens on ``GET /events`` for terminal output, process exits and
filesystem changes. This class owns the registries and services; it
only routes requests, validates arguments and fans events out.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from vibe.adapters.event_bus import EventBus
from vibe.adapters.events import EVENT_KINDS, event_to_dict
from vibe.engine.config import ServiceConfig
from vibe.engine.errors import BackendError, FileSystemError, InvalidArgumentsError
from vibe.engine.session_registry import SessionRegistry
from vibe.shared.services.file_ops import FileOperationService
from vibe.shared.services.store import SettingsStore
from vibe.shared.services.watch_registry import WatchRegistry
from vibe.transport.commands import (
    Command,
    bind_args,
    describe_commands,
    parse_command,
)

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


class BackendServer:
    """aiohttp application exposing the backend services to the UI."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        store: SettingsStore | None = None,
        observer_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._config = config or ServiceConfig()
        self._host = self._config.host
        self._port = self._config.port
        self._started_at = time.time()

        self._bus = EventBus(maxsize=self._config.sse_queue_size)
        self._sessions = SessionRegistry(self._config, self._bus.publish)
        if observer_factory is not None:
            self._watches = WatchRegistry(self._bus.publish, observer_factory)
        else:
            self._watches = WatchRegistry(self._bus.publish)
        self._files = FileOperationService(
            move_cross_device_fallback=self._config.move_cross_device_fallback,
        )
        self._store = store if store is not None else SettingsStore(self._config.store_path)

        self._handlers = self._build_dispatch_table()
        missing = [c.value for c in Command if c not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for command(s): {', '.join(missing)}")

        self._app = web.Application(middlewares=[self._access_log_middleware])
        self._app.on_shutdown.append(self._on_shutdown)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int:
        return self._port

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def watches(self) -> WatchRegistry:
        return self._watches

    @property
    def files(self) -> FileOperationService:
        return self._files

    @property
    def store(self) -> SettingsStore:
        return self._store

    # ── Middleware ──

    @web.middleware
    async def _access_log_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        request["req_id"] = request.headers.get("x-vibe-request-id") or uuid.uuid4().hex[:8]
        began = time.perf_counter()
        status: int | str = "error"
        try:
            response = await handler(request)
            status = response.status
            return response
        finally:
            logger.info(
                "%s %s -> %s in %.1fms req=%s",
                request.method, request.rel_url, status,
                (time.perf_counter() - began) * 1000, request["req_id"],
            )

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/commands", self._handle_list_commands)
        r.add_get("/events", self._handle_sse)
        r.add_post("/invoke/{command}", self._handle_invoke)

    def _build_dispatch_table(self) -> dict[Command, Handler]:
        return {
            Command.TERMINAL_CREATE: self._sessions.create,
            Command.TERMINAL_WRITE: self._sessions.write,
            Command.TERMINAL_RESIZE: self._terminal_resize,
            Command.TERMINAL_DESTROY: self._sessions.destroy,
            Command.FILE_READ: self._files.read,
            Command.FILE_WRITE: self._files.write,
            Command.FILE_DELETE: self._files.delete,
            Command.FILE_CREATE_DIRECTORY: self._files.create_directory,
            Command.FILE_LIST_DIRECTORY: self._file_list_directory,
            Command.FILE_COPY: self._files.copy,
            Command.FILE_MOVE: self._files.move,
            Command.FILE_EXISTS: self._files.exists,
            Command.FILE_WATCH_DIRECTORY: self._watches.watch_directory,
            Command.FILE_STOP_WATCHING: self._watches.stop_watching,
            Command.STORE_GET: self._store_get,
            Command.STORE_SET: self._store_set,
            Command.STORE_DELETE: self._store_delete,
        }

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the server and print the port to stdout."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._bound_port(runner)
        if actual_port is None:
            raise RuntimeError("Backend server started but no listening socket was reported.")
        self._port = actual_port

        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("Backend server listening on %s:%d", self._host, actual_port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def shutdown(self) -> None:
        """Stop every session and watch, then close the event stream."""
        await self._sessions.shutdown()
        await self._watches.shutdown()
        self._bus.close()

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.shutdown()

    @staticmethod
    def _bound_port(runner: web.AppRunner) -> int | None:
        for address in runner.addresses:
            # IPv4 gives (host, port), IPv6 gives (host, port, flowinfo, scope_id).
            if isinstance(address, tuple) and len(address) > 1:
                return int(address[1])
        return None

    # ── Command handlers not served directly by a service ──

    async def _terminal_resize(self, session_id: str, cols: int, rows: int) -> bool:
        return self._sessions.resize(session_id, cols, rows)

    async def _file_list_directory(self, path: str) -> list[dict[str, Any]]:
        entries = await self._files.list_directory(path)
        return [entry.to_dict() for entry in entries]

    async def _store_get(self, key: str) -> Any:
        return self._store.get(key)

    async def _store_set(self, key: str, value: Any) -> None:
        try:
            self._store.set(key, value)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentsError(Command.STORE_SET.value, f"value is not JSON-serializable: {exc}") from exc
        except OSError as exc:
            raise self._store_failure("write setting", exc) from exc

    async def _store_delete(self, key: str) -> None:
        try:
            self._store.delete(key)
        except OSError as exc:
            raise self._store_failure("delete setting", exc) from exc

    def _store_failure(self, operation: str, exc: OSError) -> FileSystemError:
        error = FileSystemError(operation, str(self._store.path), exc.strerror or str(exc))
        logger.warning("%s", error)
        return error

    # ── HTTP handlers ──

    @staticmethod
    def _error_response(exc: BackendError) -> web.Response:
        return web.json_response(
            {"error": str(exc), "kind": type(exc).__name__},
            status=exc.http_status,
        )

    async def _handle_invoke(self, request: web.Request) -> web.Response:
        name = request.match_info["command"]
        try:
            command = parse_command(name)
            body: Any = {}
            if request.can_read_body:
                try:
                    body = await request.json()
                except json.JSONDecodeError as exc:
                    raise InvalidArgumentsError(name, f"request body is not valid JSON: {exc}") from exc
            if not isinstance(body, dict):
                raise InvalidArgumentsError(name, "request body must be a JSON object")
            kwargs = bind_args(command, body.get("args"))
            result = await self._handlers[command](**kwargs)
        except BackendError as exc:
            logger.debug("Command %s failed req=%s: %s", name, request.get("req_id", "unknown"), exc)
            return self._error_response(exc)
        return web.json_response({"result": result})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "sessions": len(self._sessions),
            "watchers": len(self._watches),
            "terminals": self._sessions.list_sessions(),
            "watches": self._watches.list_watches(),
            "event_subscribers": self._bus.subscriber_count,
        })

    async def _handle_list_commands(self, request: web.Request) -> web.Response:
        return web.json_response({"commands": describe_commands()})

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        kinds: list[str] | None = None
        raw_kinds = request.query.get("kinds", "").strip()
        if raw_kinds:
            kinds = [k.strip() for k in raw_kinds.split(",") if k.strip()]
            unknown = sorted(set(kinds) - set(EVENT_KINDS))
            if unknown:
                return web.json_response(
                    {"error": f"Unknown event kind(s): {', '.join(unknown)}", "kind": "InvalidArgumentsError"},
                    status=400,
                )

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        await response.prepare(request)

        sub = self._bus.subscribe(kinds)
        req_id = request.get("req_id", "unknown")
        logger.info("SSE client connected req=%s active_clients=%d", req_id, self._bus.subscriber_count)

        try:
            await response.write(
                f"event: connected\ndata: {json.dumps({'kinds': kinds or list(EVENT_KINDS)})}\n\n".encode()
            )
            while True:
                event = await sub.get(timeout=self._config.sse_keepalive_seconds)
                if event is None:
                    if self._bus.closed:
                        break
                    await response.write(b": keepalive\n\n")
                    continue
                data = json.dumps(event_to_dict(event))
                await response.write(f"event: {event.kind}\ndata: {data}\n\n".encode())
        except (ConnectionResetError, asyncio.CancelledError):
            pass
        finally:
            self._bus.unsubscribe(sub)
            logger.info("SSE client disconnected req=%s active_clients=%d", req_id, self._bus.subscriber_count)
        return response
