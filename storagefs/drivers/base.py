"""
The storage driver contract.

A driver translates generic storage primitives to one backend (an S3-compatible
object store, a local directory, ...). Drivers work on raw keys: the key mapping,
directory emulation and consistency cache live in the filesystem layer above.
Drivers do not retry; every call either succeeds or raises the backend's error.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Mapping

from storagefs.config import Visibility
from storagefs.errors import NotSupportedError
from storagefs.models import PresignedUpload, StorageItem, StorageStat

ByteSource = bytes | bytearray | AsyncIterable[bytes]


async def read_all(data: ByteSource) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    return b"".join([chunk async for chunk in data])


def expiry_seconds(expires: timedelta) -> int:
    seconds = int(expires.total_seconds())
    if seconds <= 0:
        raise ValueError(f"Presigned URL expiry must be positive, got {expires}")
    return seconds


class StorageDriver(ABC):
    separator: str = "/"

    async def ensure_ready(self) -> None:
        """Provision the backend if needed. Must be idempotent."""

    @abstractmethod
    async def stat(self, key: str) -> StorageStat | None:
        """Metadata for a key: a file, a (virtual) directory, or None if missing"""

    @abstractmethod
    def list(self, prefix: str, recursive: bool = False) -> AsyncIterator[StorageItem]:
        """
        Stream the entries below prefix, with paths relative to prefix.
        If not recursive, deeper keys collapse into a single directory entry.
        """

    @abstractmethod
    async def upload(
        self,
        key: str,
        data: ByteSource,
        length: int | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Store data under key, replacing any existing object"""

    @abstractmethod
    async def download(self, key: str) -> AsyncIterator[bytes]: ...

    @abstractmethod
    async def download_range(self, key: str, start: int | None = None, end: int | None = None) -> AsyncIterator[bytes]:
        """
        Download bytes [start, end) of the object. Without start, download everything.
        A missing object raises here. The returned stream holds the underlying resource
        until it is exhausted or closed with aclose.
        """

    async def create_directory(self, key: str) -> None:
        """Object stores have no directories; backends that do create them here"""

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            await self.delete(key)

    @abstractmethod
    async def copy(self, source: str, destination: str) -> None: ...

    def public_url(self, key: str) -> str | None:
        return None

    @property
    def supports_temporary_urls(self) -> bool:
        return False

    async def presign_download(
        self, key: str, expires: timedelta, options: Mapping[str, Any] | None = None
    ) -> str | None:
        return None

    async def presign_upload(
        self, key: str, expires: timedelta, options: Mapping[str, Any] | None = None
    ) -> PresignedUpload | None:
        return None

    async def get_visibility(self, key: str) -> Visibility:
        raise NotSupportedError(f"{type(self).__name__} does not support visibility", path=key)

    async def set_visibility(self, key: str, visibility: Visibility) -> None:
        raise NotSupportedError(f"{type(self).__name__} does not support visibility", path=key)

    async def aclose(self) -> None:
        """Release any network resources held by the driver"""
