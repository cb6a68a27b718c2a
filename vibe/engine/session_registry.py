"""Session registry: the single owner of every live terminal session.

All lookups and mutations run on the event loop and never yield in the
middle of a table update, so the table needs no lock. Explicit destroy
and autonomous exit both go through ``_discard``, which only removes an
entry that still refers to the same session object.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from vibe.adapters.events import Publish
from vibe.engine.config import ServiceConfig
from vibe.engine.errors import SpawnFailure, UnknownSessionError
from vibe.engine.terminal import TerminalSession

logger = logging.getLogger(__name__)

# Upper bound on how long destroy waits for readers to drain after the kill.
_EXIT_EVENT_TIMEOUT_SECONDS = 5.0


class SessionRegistry:
    """Maps session ids to live TerminalSession instances."""

    def __init__(self, config: ServiceConfig, publish: Publish) -> None:
        self._config = config
        self._publish = publish
        self._sessions: dict[str, TerminalSession] = {}
        # Ids whose spawn is in flight; reserved so a concurrent create
        # with the same id fails instead of racing.
        self._spawning: set[str] = set()
        # Ids being destroyed; held until the old exit event is out so a
        # new session under the same id never sees it.
        self._closing: set[str] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> TerminalSession | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> TerminalSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def list_sessions(self) -> list[dict[str, Any]]:
        return [session.to_dict() for session in self._sessions.values()]

    async def create(self, session_id: str, cwd: str | None = None) -> dict[str, Any]:
        """Spawn a shell for *session_id*.

        Returns ``{"success": True}`` or ``{"success": False, "error": ...}``;
        spawn failures never propagate as exceptions.
        """
        if session_id in self._closing:
            logger.warning("Terminal create rejected: id=%s is still shutting down", session_id)
            return {"success": False, "error": f"Terminal {session_id} is still shutting down"}
        if session_id in self._sessions or session_id in self._spawning:
            logger.warning("Terminal create rejected: id=%s already exists", session_id)
            return {"success": False, "error": f"Terminal {session_id} already exists"}

        self._spawning.add(session_id)
        try:
            session = await TerminalSession.spawn(
                session_id,
                cwd=cwd or self._config.default_cwd,
                shell=self._config.shell,
                shell_args=self._config.shell_args,
                publish=self._publish,
                on_exit=self._on_session_exit,
                read_chunk_size=self._config.read_chunk_size,
            )
        except SpawnFailure as exc:
            logger.warning("Terminal spawn failed id=%s: %s", session_id, exc.reason)
            return {"success": False, "error": exc.reason}
        finally:
            self._spawning.discard(session_id)

        self._sessions[session_id] = session
        session.start()
        return {"success": True}

    async def write(self, session_id: str, data: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return await session.write(data)

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        try:
            session = self.require(session_id)
        except UnknownSessionError:
            logger.debug("Resize ignored for unknown terminal %s", session_id)
            return False
        return session.resize(cols, rows)

    async def destroy(self, session_id: str) -> bool:
        """Terminate and forget a session. False if it was already gone."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        self._discard(session)
        self._closing.add(session_id)
        logger.info("Destroying terminal id=%s pid=%s", session_id, session.pid)
        try:
            await session.terminate(self._config.terminate_grace_seconds)
            # Returns once the exit event for this session is out.
            await session.wait_closed(timeout=_EXIT_EVENT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Terminal %s exit event still pending after destroy", session_id)
        finally:
            self._closing.discard(session_id)
        return True

    async def shutdown(self) -> None:
        """Destroy every live session."""
        ids = list(self._sessions)
        if not ids:
            return
        logger.info("Shutting down %d terminal session(s)", len(ids))
        results = await asyncio.gather(
            *(self.destroy(session_id) for session_id in ids),
            return_exceptions=True,
        )
        for session_id, result in zip(ids, results):
            if isinstance(result, Exception):
                logger.warning("Failed to destroy terminal %s: %s", session_id, result)

    def _on_session_exit(self, session: TerminalSession) -> None:
        if self._discard(session):
            logger.info("Terminal %s removed after process exit", session.id)

    def _discard(self, session: TerminalSession) -> bool:
        if self._sessions.get(session.id) is not session:
            return False
        del self._sessions[session.id]
        return True
