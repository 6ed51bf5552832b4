"""Object store backed by a local directory."""

from __future__ import annotations

import asyncio
from pathlib import Path

from .base import ObjectStore


class FileSystemObjectStore(ObjectStore):
    """Write uploaded objects below ``root``, one file per key."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Object key escapes storage root: {key}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)

    async def put(self, data: bytes, key: str) -> str:
        path = self._path_for(key)
        await asyncio.to_thread(self._write, path, data)
        return path.as_uri()
