"""Process bridge: one OS shell process per terminal session.

A TerminalSession owns its process handle, forwards stdin writes, and
runs two reader tasks (stdout, stderr) that publish ``terminal:data``
events. A third task waits for the process to end, lets the readers
drain, then publishes exactly one ``terminal:exit`` event and reports
the exit to its owner.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any

from vibe.adapters.events import Publish, TerminalData, TerminalExit
from vibe.engine.errors import SpawnFailure

logger = logging.getLogger(__name__)

ExitCallback = Callable[["TerminalSession"], None]

# How long readers may keep draining after the shell itself has exited.
# Background jobs that inherited the pipes would otherwise hold them open.
_DRAIN_TIMEOUT_SECONDS = 1.0


class SessionStatus(str, Enum):
    RUNNING = "running"
    EXITED = "exited"


class TerminalSession:
    """A managed shell process plus its bookkeeping."""

    def __init__(
        self,
        session_id: str,
        cwd: str,
        proc: asyncio.subprocess.Process,
        *,
        publish: Publish,
        on_exit: ExitCallback | None = None,
        read_chunk_size: int = 4096,
    ) -> None:
        self.id = session_id
        self.cwd = cwd
        self.status = SessionStatus.RUNNING
        self.exit_code: int | None = None
        self.cols: int | None = None
        self.rows: int | None = None
        self._proc = proc
        self._publish = publish
        self._on_exit = on_exit
        self._read_chunk_size = read_chunk_size
        self._readers: list[asyncio.Task[None]] = []
        self._waiter: asyncio.Task[None] | None = None

    @classmethod
    async def spawn(
        cls,
        session_id: str,
        *,
        cwd: str,
        shell: str,
        shell_args: Sequence[str] = (),
        env: dict[str, str] | None = None,
        publish: Publish,
        on_exit: ExitCallback | None = None,
        read_chunk_size: int = 4096,
    ) -> TerminalSession:
        """Start the shell process. Raises SpawnFailure on any OS error.

        The returned session is not yet streaming; call ``start()`` once
        the owner has registered it.
        """
        if not os.path.isdir(cwd):
            raise SpawnFailure(session_id, f"working directory does not exist: {cwd}")
        try:
            proc = await asyncio.create_subprocess_exec(
                shell,
                *shell_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            reason = exc.strerror or str(exc)
            raise SpawnFailure(session_id, f"{shell}: {reason}") from exc
        logger.info(
            "Spawned terminal id=%s pid=%s shell=%s cwd=%s",
            session_id, proc.pid, shell, cwd,
        )
        return cls(
            session_id,
            cwd,
            proc,
            publish=publish,
            on_exit=on_exit,
            read_chunk_size=read_chunk_size,
        )

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    @property
    def running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def start(self) -> None:
        """Begin forwarding output and watching for process exit."""
        if self._waiter is not None:
            return
        for stream in (self._proc.stdout, self._proc.stderr):
            if stream is not None:
                self._readers.append(asyncio.create_task(self._pump(stream)))
        self._waiter = asyncio.create_task(self._wait_for_exit())

    async def write(self, data: str) -> bool:
        """Forward *data* verbatim to the shell's stdin."""
        stdin = self._proc.stdin
        if not self.running or stdin is None or stdin.is_closing():
            return False
        try:
            stdin.write(data.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.debug("Write to terminal %s failed: %s", self.id, exc)
            return False
        return True

    def resize(self, cols: int, rows: int) -> bool:
        """Record the requested geometry.

        Pipe-backed shells have no pseudo-terminal, so the geometry is
        kept for reporting only and never reaches the process.
        """
        if not self.running:
            return False
        self.cols = cols
        self.rows = rows
        logger.debug("Terminal %s geometry recorded cols=%d rows=%d", self.id, cols, rows)
        return True

    async def terminate(self, grace_seconds: float = 1.0) -> None:
        """Stop the process group, escalating to SIGKILL after *grace_seconds*."""
        if self._proc.returncode is not None:
            return
        if not self._signal(signal.SIGTERM):
            return
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=max(0.0, grace_seconds))
            return
        except asyncio.TimeoutError:
            pass
        logger.warning(
            "Terminal %s pid=%s still running after SIGTERM; escalating to SIGKILL",
            self.id, self._proc.pid,
        )
        self._signal(getattr(signal, "SIGKILL", signal.SIGTERM), force=True)
        await self._proc.wait()

    async def wait_closed(self, timeout: float | None = None) -> None:
        """Wait until the exit event has been published."""
        if self._waiter is None:
            return
        await asyncio.wait_for(asyncio.shield(self._waiter), timeout=timeout)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cwd": self.cwd,
            "status": self.status.value,
            "pid": self.pid,
            "exitCode": self.exit_code,
            "cols": self.cols,
            "rows": self.rows,
        }

    # ── internals ──

    def _signal(self, sig: int, *, force: bool = False) -> bool:
        """Signal the whole process group when the platform has one."""
        if self._proc.returncode is not None:
            return False
        try:
            if hasattr(os, "killpg"):
                os.killpg(self._proc.pid, sig)
            elif force:
                self._proc.kill()
            else:
                self._proc.terminate()
            return True
        except ProcessLookupError:
            return False

    async def _pump(self, stream: asyncio.StreamReader) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(self._read_chunk_size)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                self._publish(TerminalData(id=self.id, data=text))
        tail = decoder.decode(b"", final=True)
        if tail:
            self._publish(TerminalData(id=self.id, data=tail))

    async def _wait_for_exit(self) -> None:
        exit_code = await self._proc.wait()
        if self._readers:
            _, pending = await asyncio.wait(self._readers, timeout=_DRAIN_TIMEOUT_SECONDS)
            for task in pending:
                task.cancel()
            results = await asyncio.gather(*self._readers, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning("Terminal %s output reader failed: %s", self.id, result)
        self.status = SessionStatus.EXITED
        self.exit_code = exit_code
        logger.info("Terminal %s exited code=%s", self.id, exit_code)
        self._publish(TerminalExit(id=self.id, exit_code=exit_code))
        if self._on_exit is not None:
            self._on_exit(self)
