"""File operations exposed to the UI.

Stateless and single-shot: every call re-resolves the filesystem and
runs its blocking work in a worker thread so the event loop stays free.
Failures are logged and re-raised as FileSystemError carrying the
operation and the offending path(s). Nothing is retried here.
"""
from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
import stat

from vibe.engine.errors import FileSystemError
from vibe.shared.models.file_info import FileInfo

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Expand ``~`` and make *path* absolute."""
    return os.path.abspath(os.path.expanduser(path))


def _reason(exc: OSError) -> str:
    return exc.strerror or str(exc)


class FileOperationService:
    """CRUD and metadata operations over the local filesystem."""

    def __init__(self, *, move_cross_device_fallback: bool = True) -> None:
        self._move_fallback = move_cross_device_fallback

    async def read(self, path: str) -> str:
        target = normalize_path(path)
        try:
            return await asyncio.to_thread(self._read_text, target)
        except (OSError, UnicodeDecodeError) as exc:
            raise self._failure("read", target, exc) from exc

    async def write(self, path: str, content: str) -> None:
        target = normalize_path(path)
        try:
            await asyncio.to_thread(self._write_text, target, content)
        except OSError as exc:
            raise self._failure("write", target, exc) from exc

    async def delete(self, path: str) -> None:
        target = normalize_path(path)
        try:
            await asyncio.to_thread(self._delete, target)
        except OSError as exc:
            raise self._failure("delete", target, exc) from exc

    async def create_directory(self, path: str) -> None:
        target = normalize_path(path)
        try:
            await asyncio.to_thread(os.makedirs, target, exist_ok=True)
        except OSError as exc:
            raise self._failure("create directory", target, exc) from exc

    async def list_directory(self, path: str) -> list[FileInfo]:
        target = normalize_path(path)
        try:
            entries = await asyncio.to_thread(self._scan, target)
        except OSError as exc:
            raise self._failure("list directory", target, exc) from exc
        entries.sort(key=FileInfo.sort_key)
        return entries

    async def copy(self, src: str, dst: str) -> None:
        source = normalize_path(src)
        dest = normalize_path(dst)
        try:
            await asyncio.to_thread(self._copy, source, dest)
        except (OSError, shutil.Error) as exc:
            raise self._failure("copy", source, exc, dest=dest) from exc

    async def move(self, src: str, dst: str) -> None:
        source = normalize_path(src)
        dest = normalize_path(dst)
        try:
            await asyncio.to_thread(self._move, source, dest)
        except (OSError, shutil.Error) as exc:
            raise self._failure("move", source, exc, dest=dest) from exc

    async def exists(self, path: str) -> bool:
        """True if *path* exists. Any access failure counts as "does not exist"."""
        try:
            target = normalize_path(path)
            return await asyncio.to_thread(os.path.exists, target)
        except (OSError, ValueError, TypeError):
            return False

    # ── blocking helpers (run in worker threads) ──

    @staticmethod
    def _read_text(path: str) -> str:
        with open(path, encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def _write_text(path: str, content: str) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

    @staticmethod
    def _delete(path: str) -> None:
        st = os.lstat(path)
        if stat.S_ISDIR(st.st_mode):
            shutil.rmtree(path)
        else:
            os.unlink(path)

    @staticmethod
    def _scan(path: str) -> list[FileInfo]:
        entries: list[FileInfo] = []
        with os.scandir(path) as it:
            for entry in it:
                full_path = os.path.join(path, entry.name)
                try:
                    st = entry.stat()
                except FileNotFoundError:
                    # Dangling symlink: describe the link itself.
                    st = entry.stat(follow_symlinks=False)
                entries.append(FileInfo.from_stat(entry.name, full_path, st))
        return entries

    @staticmethod
    def _copy(src: str, dst: str) -> None:
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        if os.path.isdir(src):
            shutil.copytree(src, dst, symlinks=True)
        else:
            shutil.copy2(src, dst)

    def _move(self, src: str, dst: str) -> None:
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        try:
            os.rename(src, dst)
        except OSError as exc:
            if exc.errno != errno.EXDEV or not self._move_fallback:
                raise
            logger.info("Cross-device move %s -> %s; copying then deleting", src, dst)
            shutil.move(src, dst)

    @staticmethod
    def _failure(
        operation: str,
        path: str,
        exc: Exception,
        dest: str | None = None,
    ) -> FileSystemError:
        reason = _reason(exc) if isinstance(exc, OSError) else str(exc)
        error = FileSystemError(operation, path, reason, dest=dest)
        logger.warning("%s", error)
        return error
