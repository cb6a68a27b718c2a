"""FileInfo: point-in-time metadata for one filesystem entry."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class FileInfo:
    """Snapshot of a directory entry, recomputed on every listing."""

    name: str
    path: str  # Absolute
    is_directory: bool
    modified: datetime
    size: int | None = None  # None for directories
    extension: str | None = None  # None for directories, "" when absent

    @classmethod
    def from_stat(cls, name: str, path: str, st: os.stat_result) -> FileInfo:
        is_dir = stat.S_ISDIR(st.st_mode)
        return cls(
            name=name,
            path=path,
            is_directory=is_dir,
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            size=None if is_dir else st.st_size,
            extension=None if is_dir else os.path.splitext(name)[1],
        )

    def sort_key(self) -> tuple[bool, str, str]:
        # Directories first, then case-insensitive name.
        return (not self.is_directory, self.name.casefold(), self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "isDirectory": self.is_directory,
            "size": self.size,
            "modified": self.modified.isoformat(),
            "extension": self.extension,
        }
