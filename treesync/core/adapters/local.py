"""
Local durable stores: in-memory and file-based.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from .base import BaseLocalStore

__all__ = [
    "MemoryLocalStore",
    "FileLocalStore",
]


class MemoryLocalStore(BaseLocalStore):
    """
    Store backed by a dict; contents are lost with the process.
    """

    records: dict[str, str]

    def __init__(self, records: dict[str, str] | None = None):
        self.records = dict(records or {})

    def read(self, key: str) -> str | None:
        return self.records.get(key)

    def write(self, key: str, raw: str):
        self.records[key] = raw


class FileLocalStore(BaseLocalStore):
    """
    Store keeping each record in `<directory>/<key>.json`. Writes are atomic:
    a reader never observes a partially written snapshot.
    """

    directory: Path

    def __init__(self, directory: Path | str = ".treesync"):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or key in (".", ".."):
            raise ValueError(f"Invalid record key: {key!r}")
        return self.directory / f"{key}.json"

    def read(self, key: str) -> str | None:
        path = self.path_for(key)

        if not path.is_file():
            return None

        return path.read_text(encoding="utf-8")

    def write(self, key: str, raw: str):
        path = self.path_for(key)
        self.directory.mkdir(parents=True, exist_ok=True)

        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(raw)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
