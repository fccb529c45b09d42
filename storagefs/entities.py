"""
Files, directories and links of a CloudFileSystem.

Entities are cheap handles (filesystem + absolute path); nothing is fetched until
an operation is awaited. File operations are direct delegations to the driver.
Directories are virtual on object stores: they exist when keys share their
prefix, or when this process recently created them (see ConsistencyCache).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterable, AsyncIterator, Mapping

from storagefs import paths
from storagefs.errors import DirectoryNotEmptyError, NotSupportedError
from storagefs.models import EntityType, MoveResult, StorageStat

if TYPE_CHECKING:
    from storagefs.filesystem import CloudFileSystem

logger = logging.getLogger("storagefs.entities")


class Entity:
    expected_type: EntityType

    def __init__(self, filesystem: CloudFileSystem, path: str):
        self.filesystem = filesystem
        self.path = path

    @property
    def separator(self) -> str:
        return self.filesystem.separator

    @property
    def driver(self):
        return self.filesystem.driver

    @property
    def cache(self):
        return self.filesystem.cache

    @property
    def dirname(self) -> str:
        return paths.dirname(self.path, self.separator)

    @property
    def basename(self) -> str:
        return paths.basename(self.path, self.separator)

    @property
    def parent(self) -> Directory:
        return Directory(self.filesystem, self.dirname)

    @property
    def remote_path(self) -> str:
        return self.filesystem.to_remote_path(self.path)

    @property
    def uri(self) -> str:
        """The public URL if the backend exposes one, otherwise a cloud: uri with the key"""
        return self.driver.public_url(self.remote_path) or f"cloud:{self.remote_path}"

    async def stat(self) -> StorageStat:
        return await self.filesystem.stat(self.path)

    async def exists(self) -> bool:
        known = self.cache.lookup(self.remote_path)
        if known is not None:
            return known
        return (await self.stat()).type == self.expected_type

    async def exists_at_path(self) -> bool:
        """Is there anything (of any type) at this path?"""
        return (await self.stat()).type != EntityType.NOT_FOUND

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and self.filesystem is other.filesystem and self.path == other.path

    def __hash__(self) -> int:
        return hash((type(self), id(self.filesystem), self.path))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"


class File(Entity):
    expected_type = EntityType.FILE

    async def create(self, exclusive: bool = False) -> File:
        """Create an empty file, replacing existing content unless exclusive is set"""
        if exclusive and await self.exists():
            raise FileExistsError(f"File already exists: {self.path}")
        return await self.write_bytes(b"")

    async def open_read(self, start: int | None = None, end: int | None = None) -> AsyncIterator[bytes]:
        """Stream the content, or only bytes [start, end)"""
        stream = await self.driver.download_range(self.remote_path, start=start, end=end)
        async with aclosing(stream):
            async for chunk in stream:
                yield chunk

    async def read_bytes(self) -> bytes:
        async with aclosing(await self.driver.download(self.remote_path)) as stream:
            return b"".join([chunk async for chunk in stream])

    async def read_text(self, encoding: str = "utf-8") -> str:
        return (await self.read_bytes()).decode(encoding)

    async def read_lines(self, encoding: str = "utf-8") -> list[str]:
        return (await self.read_text(encoding)).splitlines()

    async def write_bytes(self, data: bytes, metadata: Mapping[str, str] | None = None) -> File:
        await self.driver.upload(self.remote_path, data, length=len(data), metadata=metadata)
        self.cache.record_create(self.remote_path)
        return self

    async def write_text(self, text: str, encoding: str = "utf-8", metadata: Mapping[str, str] | None = None) -> File:
        return await self.write_bytes(text.encode(encoding), metadata=metadata)

    async def write_stream(
        self, stream: AsyncIterable[bytes], length: int | None = None, metadata: Mapping[str, str] | None = None
    ) -> File:
        await self.driver.upload(self.remote_path, stream, length=length, metadata=metadata)
        self.cache.record_create(self.remote_path)
        return self

    async def copy(self, new_path: str) -> File:
        destination = self.filesystem.file(new_path)
        await self.driver.copy(self.remote_path, destination.remote_path)
        self.cache.record_create(destination.remote_path)
        return destination

    async def rename(self, new_path: str) -> MoveResult:
        """
        Copy to new_path, then delete this file. This is not atomic: if the delete fails
        the copy is kept, and the result reports copied=True, deleted=False.
        A failing copy raises, since nothing has changed yet.
        """
        destination = self.filesystem.file(new_path)
        result = MoveResult(source=self.path, destination=destination.path)
        await self.copy(destination.path)
        result.copied = True
        try:
            await self.delete()
        except Exception as e:
            logger.warning(f"Moved {self.path} to {destination.path}, but could not delete the source: {e}")
            result.error = e
            return result
        result.deleted = True
        return result

    async def delete(self) -> File:
        await self.driver.delete(self.remote_path)
        self.cache.record_delete(self.remote_path)
        return self

    async def length(self) -> int:
        stat = await self._existing_stat()
        return stat.size

    async def last_modified(self) -> datetime | None:
        stat = await self._existing_stat()
        return stat.modified

    async def _existing_stat(self) -> StorageStat:
        stat = await self.stat()
        if stat.type == EntityType.NOT_FOUND:
            raise FileNotFoundError(f"File not found: {self.path}")
        return stat


class Directory(Entity):
    expected_type = EntityType.DIRECTORY

    @property
    def remote_path(self) -> str:
        base = super().remote_path
        if not base or base.endswith(self.separator):
            return base
        return base + self.separator

    @property
    def is_root(self) -> bool:
        return paths.is_root(self.path, self.separator)

    async def exists(self) -> bool:
        if self.is_root and not self.filesystem.prefix:
            return True
        known = self.cache.lookup(self.remote_path)
        if known is not None:
            return known
        try:
            return await asyncio.wait_for(self._has_entries(), timeout=self.filesystem.probe_timeout)
        except TimeoutError:
            logger.debug(f"Directory probe for {self.path} timed out, assuming it does not exist")
            return False

    async def _has_entries(self) -> bool:
        async with aclosing(self.driver.list(self.remote_path, recursive=False)) as items:
            async for _item in items:
                return True
        return False

    async def create(self, recursive: bool = False) -> Directory:
        """
        Directories on object stores are virtual: nothing is written, the directory is
        only remembered as created. With recursive, the parent chain is registered too,
        up to the root or the first ancestor that is already registered.
        """
        if recursive:
            parent = self.parent
            if not parent.is_root and parent.path != self.path and not self.cache.is_created(parent.remote_path):
                await parent.create(recursive=True)
        await self.driver.create_directory(self.remote_path)
        self.cache.record_create(self.remote_path)
        return self

    async def delete(self, recursive: bool = False) -> Directory:
        """
        Delete the directory. With recursive, every object below it is deleted; otherwise
        a non-empty directory raises DirectoryNotEmptyError.
        """
        keys = []
        if recursive:
            async for item in self.driver.list(self.remote_path, recursive=True):
                key = self._full_remote(item.path)
                keys.append(key + self.separator if item.is_directory else key)
        elif not await self._is_empty():
            raise DirectoryNotEmptyError(path=self.path)
        # also remove directory markers, or the directory itself on backends that have them
        if self.remote_path:
            keys.append(self.remote_path)
        if keys:
            await self.driver.delete_many(keys)
        for key in keys:
            self.cache.record_delete(key)
        self.cache.record_delete(self.remote_path)
        return self

    async def _is_empty(self) -> bool:
        return not await self._has_entries()

    async def rename(self, new_path: str) -> MoveResult:
        """Copy every file below this directory to new_path, then delete this directory (not atomic)"""
        destination = self.filesystem.directory(new_path)
        result = MoveResult(source=self.path, destination=destination.path)
        async for item in self.driver.list(self.remote_path, recursive=True):
            if item.is_directory:
                continue
            await self.driver.copy(self._full_remote(item.path), destination._full_remote(item.path))
            self.cache.record_create(destination._full_remote(item.path))
        self.cache.record_create(destination.remote_path)
        result.copied = True
        try:
            await self.delete(recursive=True)
        except Exception as e:
            logger.warning(f"Copied {self.path} to {destination.path}, but could not delete the source: {e}")
            result.error = e
            return result
        result.deleted = True
        return result

    async def list(self, recursive: bool = False) -> AsyncIterator[File | Directory]:
        async for item in self.driver.list(self.remote_path, recursive=recursive):
            path = self.filesystem.from_remote_path(self._full_remote(item.path))
            if item.is_directory:
                yield Directory(self.filesystem, path)
            else:
                yield File(self.filesystem, path)

    def child_file(self, basename: str) -> File:
        return self.filesystem.file(basename, base=self.path)

    def child_directory(self, basename: str) -> Directory:
        return self.filesystem.directory(basename, base=self.path)

    def child_link(self, basename: str) -> Link:
        return self.filesystem.link(basename, base=self.path)

    def _full_remote(self, relative: str) -> str:
        return f"{self.remote_path}{relative}"


class Link(Entity):
    """Object stores have no symbolic links: links never exist and cannot be changed."""

    expected_type = EntityType.LINK

    async def exists(self) -> bool:
        return False

    async def create(self, target: str, recursive: bool = False) -> Link:
        raise NotSupportedError("Symbolic links not supported", path=self.path)

    async def update(self, target: str) -> Link:
        raise NotSupportedError("Symbolic links not supported", path=self.path)

    async def delete(self) -> Link:
        raise NotSupportedError("Symbolic links not supported", path=self.path)

    async def rename(self, new_path: str) -> Link:
        raise NotSupportedError("Symbolic links not supported", path=self.path)

    async def target(self) -> str:
        raise NotSupportedError("Symbolic links not supported", path=self.path)
