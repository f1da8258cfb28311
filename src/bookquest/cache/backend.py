"""Byte-level storage behind the pipeline cache.

The CacheBackend protocol is the only way cache logic touches storage:
named blobs that can be read, written, deleted and probed.
FileCacheBackend maps names to files in one directory; MemoryCacheBackend
keeps them in a dict for tests and cache-less runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """Storage protocol for cache blobs.

    Methods raise no cache-specific errors; storage failures surface as
    whatever the backend raises (``OSError`` for files, ``KeyError`` for a
    missing name on ``read``).
    """

    @property
    def location(self) -> str:
        """Human-readable description of where blobs live."""
        ...

    def read(self, name: str) -> bytes:
        """Return the blob stored under *name*."""
        ...

    def write(self, name: str, data: bytes) -> None:
        """Store *data* under *name*, replacing any previous blob."""
        ...

    def delete(self, name: str) -> None:
        """Remove the blob under *name*; no-op if absent."""
        ...

    def exists(self, name: str) -> bool:
        """Check whether a blob is stored under *name*."""
        ...

    def clear(self) -> None:
        """Remove every blob."""
        ...


class FileCacheBackend:
    """Blobs as files in a single directory.

    The directory is created lazily on the first write so that probing an
    unused cache leaves nothing behind.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    def location(self) -> str:
        return str(self.root)

    def _path(self, name: str) -> Path:
        if "/" in name or "\\" in name or name in ("", ".", ".."):
            raise ValueError(f"Invalid cache blob name: {name!r}")
        return self.root / name

    def read(self, name: str) -> bytes:
        path = self._path(name)
        if not path.exists():
            raise KeyError(name)
        return path.read_bytes()

    def write(self, name: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(name)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)

    def delete(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def clear(self) -> None:
        if not self.root.exists():
            return
        for path in self.root.iterdir():
            if path.is_file():
                path.unlink()
        self.root.rmdir()


class MemoryCacheBackend:
    """Blobs in a dict."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    @property
    def location(self) -> str:
        return "<memory>"

    def read(self, name: str) -> bytes:
        return self.blobs[name]

    def write(self, name: str, data: bytes) -> None:
        self.blobs[name] = bytes(data)

    def delete(self, name: str) -> None:
        self.blobs.pop(name, None)

    def exists(self, name: str) -> bool:
        return name in self.blobs

    def clear(self) -> None:
        self.blobs.clear()
