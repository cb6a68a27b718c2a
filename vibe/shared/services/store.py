"""Settings store: a small persistent key/value map kept as JSON.

Values are anything JSON can represent. Every mutation rewrites the
whole file atomically, so a crash leaves either the old or the new
contents on disk and never a truncated file.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _sync_directory(directory: Path) -> None:
    """Flush the directory entry so the replaced file name survives a crash."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(directory, flags)
    except OSError:
        # Windows cannot open a directory for fsync; the rename is still atomic.
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync unsupported for %s", directory)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Replace *path* with *content* so readers see the old or the new file, never a torn one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, scratch_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    scratch = Path(scratch_name)
    replaced = False
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(scratch, path)
        replaced = True
    finally:
        if not replaced:
            scratch.unlink(missing_ok=True)
    _sync_directory(path.parent)


class SettingsStore:
    """JSON-file backed key/value settings."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, Any] = self._load()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Persist *value* under *key*. Memory changes only after the disk write."""
        updated = dict(self._data)
        updated[key] = value
        self._save(updated)
        self._data = updated

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        updated = dict(self._data)
        del updated[key]
        self._save(updated)
        self._data = updated

    def _load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Settings file not found at %s; starting empty", self.path)
            return {}
        except OSError as exc:
            logger.warning("Could not read settings file %s: %s", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Settings file %s is corrupt (%s); starting empty", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Settings file %s does not hold an object; starting empty", self.path)
            return {}
        logger.debug("Loaded %d setting(s) from %s", len(data), self.path)
        return data

    def _save(self, data: dict[str, Any]) -> None:
        # json.dumps raises TypeError for values it cannot encode, before any I/O.
        atomic_write_text(self.path, json.dumps(data, indent=2, sort_keys=True))
