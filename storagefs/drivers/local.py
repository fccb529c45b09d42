"""
Driver that stores keys as files below a local root directory.

Blocking OS calls run in a worker thread so they never block the event loop.
Directories are real here, so the listing and stat results need no emulation.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import stat as stat_module
from datetime import UTC, datetime
from pathlib import Path
from typing import AsyncIterator, Mapping
from urllib.parse import quote

from storagefs.config import DiskConfig, Visibility
from storagefs.drivers.base import ByteSource, StorageDriver, read_all
from storagefs.errors import ConfigurationError
from storagefs.models import EntityType, StorageItem, StorageStat

PERMISSIONS = {
    Visibility.public: 0o644,
    Visibility.private: 0o600,
}


class LocalDriver(StorageDriver):
    def __init__(self, root: str | Path, base_url: str | None = None, chunk_size: int = 64 * 1024):
        self.root = Path(root).absolute()
        self.base_url = base_url
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: DiskConfig) -> LocalDriver:
        if not config.root:
            raise ConfigurationError("Local disk is missing the 'root' option")
        return cls(config.root, base_url=config.url)

    def path(self, key: str) -> Path:
        """The OS path for a key; keys can never escape the root"""
        parts = [part for part in key.split(self.separator) if part not in ("", ".")]
        if ".." in parts:
            raise ValueError(f"Invalid key {key!r}")
        return self.root.joinpath(*parts)

    async def ensure_ready(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    async def stat(self, key: str) -> StorageStat | None:
        path = self.path(key)
        try:
            result = await asyncio.to_thread(path.stat)
        except FileNotFoundError:
            return None
        modified = datetime.fromtimestamp(result.st_mtime, tz=UTC)
        if stat_module.S_ISDIR(result.st_mode):
            return StorageStat(type=EntityType.DIRECTORY, modified=modified)
        return StorageStat(type=EntityType.FILE, size=result.st_size, modified=modified)

    async def list(self, prefix: str, recursive: bool = False) -> AsyncIterator[StorageItem]:
        base = self.path(prefix)
        items = await asyncio.to_thread(self._scan, base, recursive)
        for item in items:
            yield item

    def _scan(self, base: Path, recursive: bool) -> list[StorageItem]:
        if not base.is_dir():
            return []
        result = []
        entries = sorted(base.rglob("*") if recursive else base.iterdir())
        for entry in entries:
            relative = self.separator.join(entry.relative_to(base).parts)
            if entry.is_dir():
                result.append(StorageItem(path=relative, is_directory=True))
            else:
                info = entry.stat()
                result.append(
                    StorageItem(
                        path=relative,
                        size=info.st_size,
                        modified=datetime.fromtimestamp(info.st_mtime, tz=UTC),
                    )
                )
        return result

    async def upload(
        self,
        key: str,
        data: ByteSource,
        length: int | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        path = self.path(key)
        content = await read_all(data)
        await asyncio.to_thread(self._write, path, content)
        visibility = (metadata or {}).get("visibility")
        if visibility:
            await self.set_visibility(key, Visibility(visibility))

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def download(self, key: str) -> AsyncIterator[bytes]:
        return await self.download_range(key, 0)

    async def download_range(self, key: str, start: int | None = None, end: int | None = None) -> AsyncIterator[bytes]:
        path = self.path(key)
        # a missing file fails here, the handle itself is only opened once iteration starts
        if not await asyncio.to_thread(path.is_file):
            raise FileNotFoundError(f"No such file: {key}")
        return self._iter_file(path, start or 0, end)

    async def _iter_file(self, path: Path, start: int, end: int | None) -> AsyncIterator[bytes]:
        handle = await asyncio.to_thread(open, path, "rb")
        with handle:
            await asyncio.to_thread(handle.seek, start)
            remaining = None if end is None else max(end - start, 0)
            while remaining is None or remaining > 0:
                size = self.chunk_size if remaining is None else min(self.chunk_size, remaining)
                chunk = await asyncio.to_thread(handle.read, size)
                if not chunk:
                    break
                if remaining is not None:
                    remaining -= len(chunk)
                yield chunk

    async def create_directory(self, key: str) -> None:
        await asyncio.to_thread(self.path(key).mkdir, parents=True, exist_ok=True)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, self.path(key))

    @staticmethod
    def _delete(path: Path) -> None:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)

    async def copy(self, source: str, destination: str) -> None:
        await asyncio.to_thread(self._copy, self.path(source), self.path(destination))

    @staticmethod
    def _copy(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)

    def public_url(self, key: str) -> str | None:
        if not self.base_url:
            return None
        return f"{self.base_url.rstrip('/')}/{quote(key.lstrip(self.separator), safe='/~')}"

    async def get_visibility(self, key: str) -> Visibility:
        mode = (await asyncio.to_thread(self.path(key).stat)).st_mode
        return Visibility.public if mode & stat_module.S_IROTH else Visibility.private

    async def set_visibility(self, key: str, visibility: Visibility) -> None:
        await asyncio.to_thread(os.chmod, self.path(key), PERMISSIONS[visibility])
