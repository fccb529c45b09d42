"""
Disks: the application-facing operation set on top of a CloudFileSystem.

Error policy: every operation that touches the backend honours the disk's
'throw' setting. With throw=True a failure is raised as the matching
StorageOperationError (with the backend error as __cause__); otherwise it is
logged and a sentinel (False, None, 0 or an empty list) is returned.
NotSupportedError, ConfigurationError and ReadOnlyDiskError always propagate.
"""

import hashlib
import inspect
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable, Mapping, TypeVar
from urllib.parse import quote

from storagefs.config import DiskConfig, Visibility
from storagefs.drivers.base import StorageDriver
from storagefs.entities import Directory, File
from storagefs.errors import (
    ConfigurationError,
    NotSupportedError,
    ReadOnlyDiskError,
    StorageOperationError,
    UnableToCopyFileError,
    UnableToCreateDirectoryError,
    UnableToDeleteDirectoryError,
    UnableToDeleteFileError,
    UnableToGenerateUrlError,
    UnableToListContentsError,
    UnableToMoveFileError,
    UnableToProvideChecksumError,
    UnableToReadFileError,
    UnableToRetrieveMetadataError,
    UnableToSetVisibilityError,
    UnableToWriteFileError,
)
from storagefs.filesystem import CloudFileSystem
from storagefs.models import EntityType, MoveResult, PresignedUpload

logger = logging.getLogger("storagefs.disk")

T = TypeVar("T")

ALWAYS_RAISE = (NotSupportedError, ConfigurationError, ReadOnlyDiskError)
CHECKSUM_ALGORITHMS = {"md5", "sha1", "sha256"}
MIME_SNIFF_BYTES = 2048

Contents = str | bytes | bytearray | AsyncIterable[bytes]
UrlCallback = Callable[[str, datetime, Mapping[str, Any]], Any]


class Disk:
    def __init__(self, filesystem: CloudFileSystem, config: DiskConfig, name: str | None = None):
        self.filesystem = filesystem
        self.config = config
        self.name = name

    @property
    def driver(self) -> StorageDriver:
        return self.filesystem.driver

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, driver={self.config.driver!r})"

    async def ensure_ready(self) -> None:
        await self.driver.ensure_ready()

    async def aclose(self) -> None:
        await self.driver.aclose()

    def path(self, path: str) -> str:
        """The backend key for path"""
        return self.filesystem.file(path).remote_path

    def _failed(self, error: StorageOperationError, cause: BaseException | None, sentinel: T) -> T:
        """Raise error or return sentinel for a failed operation, according to the disk's policy"""
        if isinstance(cause, ALWAYS_RAISE):
            raise cause
        if self.config.throw:
            raise error from cause
        if self.config.report:
            logger.error(f"[{self.name}] {error}", exc_info=cause)
        else:
            logger.debug(f"[{self.name}] {error}: {cause!r}")
        return sentinel

    def _ensure_writable(self, path: str) -> None:
        if self.config.read_only:
            raise ReadOnlyDiskError(path=path)

    ######################## EXISTENCE #########################

    async def exists(self, path: str) -> bool:
        """
        Is there a file or directory at path? Recent creates and deletes by this
        process are answered from the consistency cache.
        """
        try:
            cache = self.filesystem.cache
            known = {cache.lookup(self.path(path)), cache.lookup(self.filesystem.directory(path).remote_path)}
            if True in known:
                return True
            if False in known:
                return False
            return (await self.filesystem.stat(path)).type != EntityType.NOT_FOUND
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, False)

    async def missing(self, path: str) -> bool:
        return not await self.exists(path)

    async def file_exists(self, path: str) -> bool:
        try:
            return await self.filesystem.file(path).exists()
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, False)

    async def file_missing(self, path: str) -> bool:
        return not await self.file_exists(path)

    async def directory_exists(self, path: str) -> bool:
        try:
            return await self.filesystem.directory(path).exists()
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, False)

    async def directory_missing(self, path: str) -> bool:
        return not await self.directory_exists(path)

    ######################## READING #########################

    async def get(self, path: str) -> str | None:
        try:
            return await self.filesystem.file(path).read_text()
        except Exception as e:
            return self._failed(UnableToReadFileError(path=path), e, None)

    async def get_bytes(self, path: str) -> bytes | None:
        try:
            return await self.filesystem.file(path).read_bytes()
        except Exception as e:
            return self._failed(UnableToReadFileError(path=path), e, None)

    async def json(self, path: str) -> dict | None:
        """The content of path decoded as a JSON object"""
        content = await self.get(path)
        if content is None:
            return None
        try:
            decoded = json.loads(content)
            if not isinstance(decoded, dict):
                raise ValueError(f"JSON content at [{path}] is not an object")
            return decoded
        except ValueError as e:
            return self._failed(UnableToReadFileError(f"Unable to decode JSON from [{path}]", path=path), e, None)

    async def read_stream(self, path: str, start: int | None = None, end: int | None = None) -> AsyncIterator[bytes] | None:
        """
        Open path for streaming. A missing file is reported here rather than while iterating.
        Consume the stream or call its aclose (e.g. with contextlib.aclosing) to release it.
        """
        file = self.filesystem.file(path)
        try:
            return await self.driver.download_range(file.remote_path, start=start, end=end)
        except Exception as e:
            return self._failed(UnableToReadFileError(path=path), e, None)

    ######################## WRITING #########################

    async def put(self, path: str, contents: Contents, options: Mapping[str, Any] | None = None) -> bool:
        """
        Write contents (str, bytes or an async iterable of bytes) to path.
        options may contain visibility, content_type and metadata (a dict of strings).
        """
        self._ensure_writable(path)
        metadata = self._upload_metadata(options)
        file = self.filesystem.file(path)
        try:
            if isinstance(contents, str):
                await file.write_text(contents, metadata=metadata)
            elif isinstance(contents, (bytes, bytearray)):
                await file.write_bytes(bytes(contents), metadata=metadata)
            elif isinstance(contents, AsyncIterable):
                await file.write_stream(contents, metadata=metadata)
            else:
                raise TypeError(f"Unsupported content type: {type(contents).__name__}")
            return True
        except TypeError:
            raise
        except Exception as e:
            return self._failed(UnableToWriteFileError(path=path), e, False)

    async def write_stream(
        self, path: str, stream: AsyncIterable[bytes], options: Mapping[str, Any] | None = None
    ) -> bool:
        return await self.put(path, stream, options)

    def _upload_metadata(self, options: Mapping[str, Any] | None) -> dict[str, str]:
        options = dict(options or {})
        metadata = {str(k): str(v) for k, v in (options.get("metadata") or {}).items()}
        visibility = options.get("visibility") or self.config.visibility
        if visibility:
            metadata["visibility"] = Visibility(visibility).value
        if options.get("content_type"):
            metadata["content_type"] = options["content_type"]
        return metadata

    async def prepend(self, path: str, data: str, separator: str = "\n") -> bool:
        if await self.file_exists(path):
            existing = await self.get(path) or ""
            return await self.put(path, f"{data}{separator}{existing}")
        return await self.put(path, data)

    async def append(self, path: str, data: str, separator: str = "\n") -> bool:
        if await self.file_exists(path):
            existing = await self.get(path) or ""
            return await self.put(path, f"{existing}{separator}{data}")
        return await self.put(path, data)

    async def delete(self, paths: str | Iterable[str]) -> bool:
        """Delete one or more files. Returns False if any delete failed (and throw is not set)."""
        if isinstance(paths, str):
            paths = [paths]
        success = True
        for path in paths:
            self._ensure_writable(path)
            try:
                await self.filesystem.file(path).delete()
            except Exception as e:
                success = self._failed(UnableToDeleteFileError(path=path), e, False)
        return success

    async def copy(self, source: str, destination: str) -> bool:
        self._ensure_writable(destination)
        try:
            await self.filesystem.file(source).copy(self.filesystem.resolve(destination))
            return True
        except Exception as e:
            return self._failed(UnableToCopyFileError(source, destination), e, False)

    async def move(self, source: str, destination: str) -> MoveResult:
        """
        Move source to destination by copying and then deleting. Not atomic: check
        result.complete; if only the copy succeeded, both files exist.
        """
        self._ensure_writable(source)
        self._ensure_writable(destination)
        file = self.filesystem.file(source)
        try:
            result = await file.rename(self.filesystem.resolve(destination))
        except Exception as e:
            result = MoveResult(source=file.path, destination=self.filesystem.resolve(destination), error=e)
        if result.complete:
            return result
        return self._failed(UnableToMoveFileError(result), result.error, result)

    ######################## METADATA #########################

    async def size(self, path: str) -> int:
        try:
            return await self.filesystem.file(path).length()
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, 0)

    async def last_modified(self, path: str) -> datetime | None:
        try:
            return await self.filesystem.file(path).last_modified()
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, None)

    async def checksum(self, path: str, algorithm: str = "md5") -> str | None:
        algorithm = algorithm.lower()
        if algorithm not in CHECKSUM_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm [{algorithm}]")
        try:
            hasher = hashlib.new(algorithm)
            async for chunk in self.filesystem.file(path).open_read():
                hasher.update(chunk)
            return hasher.hexdigest()
        except Exception as e:
            return self._failed(UnableToProvideChecksumError(path=path), e, None)

    async def mime_type(self, path: str) -> str | None:
        """Determine the mime type by reading the first bytes of the file"""
        # libmagic is only needed for content sniffing
        import magic

        try:
            head = b""
            async for chunk in self.filesystem.file(path).open_read(0, MIME_SNIFF_BYTES):
                head += chunk
            return str(magic.from_buffer(head, mime=True))
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, None)

    async def get_visibility(self, path: str) -> Visibility | None:
        try:
            return await self.driver.get_visibility(self.path(path))
        except Exception as e:
            return self._failed(UnableToRetrieveMetadataError(path=path), e, None)

    async def set_visibility(self, path: str, visibility: Visibility | str) -> bool:
        self._ensure_writable(path)
        try:
            await self.driver.set_visibility(self.path(path), Visibility(visibility))
            return True
        except Exception as e:
            return self._failed(UnableToSetVisibilityError(path=path), e, False)

    ######################## DIRECTORIES #########################

    async def files(self, directory: str | None = None, recursive: bool = False) -> list[str]:
        """Paths (relative to the disk root) of the files in directory"""
        return await self._list(directory, recursive, File)

    async def all_files(self, directory: str | None = None) -> list[str]:
        return await self.files(directory, recursive=True)

    async def directories(self, directory: str | None = None, recursive: bool = False) -> list[str]:
        return await self._list(directory, recursive, Directory)

    async def all_directories(self, directory: str | None = None) -> list[str]:
        return await self.directories(directory, recursive=True)

    async def _list(self, directory: str | None, recursive: bool, kind: type) -> list[str]:
        separator = self.filesystem.separator
        try:
            root = self.filesystem.directory(directory or separator)
            return [
                entity.path.lstrip(separator) async for entity in root.list(recursive=recursive) if isinstance(entity, kind)
            ]
        except Exception as e:
            return self._failed(UnableToListContentsError(path=directory), e, [])

    async def make_directory(self, path: str) -> bool:
        self._ensure_writable(path)
        try:
            await self.filesystem.directory(path).create(recursive=True)
            return True
        except Exception as e:
            return self._failed(UnableToCreateDirectoryError(path=path), e, False)

    async def delete_directory(self, path: str) -> bool:
        self._ensure_writable(path)
        try:
            await self.filesystem.directory(path).delete(recursive=True)
            return True
        except Exception as e:
            return self._failed(UnableToDeleteDirectoryError(path=path), e, False)


class CloudDisk(Disk):
    """A disk that can hand out public and presigned (temporary) URLs."""

    def __init__(self, filesystem: CloudFileSystem, config: DiskConfig, name: str | None = None):
        super().__init__(filesystem, config, name)
        self._temporary_url_builder: UrlCallback | None = None
        self._temporary_upload_url_builder: UrlCallback | None = None

    def url(self, path: str) -> str:
        """The public URL for path; an explicit url in the disk configuration takes precedence"""
        if self.config.url:
            base = self.config.url.rstrip("/")
            return f"{base}/{quote(self.path(path), safe='/~')}"
        url = self.driver.public_url(self.path(path))
        if url is None:
            raise NotSupportedError("This driver does not expose public URLs", path=path)
        return url

    def provides_temporary_urls(self) -> bool:
        return self.driver.supports_temporary_urls or self._temporary_url_builder is not None

    def build_temporary_urls_using(self, callback: UrlCallback) -> None:
        """Override temporary URL generation, e.g. for testing. callback may be sync or async."""
        self._temporary_url_builder = callback

    def build_temporary_upload_urls_using(self, callback: UrlCallback) -> None:
        self._temporary_upload_url_builder = callback

    def clear_temporary_url_callbacks(self) -> None:
        self._temporary_url_builder = None
        self._temporary_upload_url_builder = None

    async def temporary_url(
        self, path: str, expiration: datetime | timedelta, options: Mapping[str, Any] | None = None
    ) -> str | None:
        """A presigned download URL for path, valid until expiration"""
        expires_at, expires = _expiration(expiration)
        try:
            if self._temporary_url_builder is not None:
                return await _call(self._temporary_url_builder, path, expires_at, options or {})
            url = await self.driver.presign_download(self.path(path), expires, options=options)
        except Exception as e:
            return self._failed(UnableToGenerateUrlError(path=path), e, None)
        if url is None:
            raise NotSupportedError("Temporary URLs are not supported by this driver", path=path)
        return url

    async def temporary_upload_url(
        self, path: str, expiration: datetime | timedelta, options: Mapping[str, Any] | None = None
    ) -> dict | None:
        """
        A presigned upload for path, valid until expiration, as a dict with url, headers
        and (for form uploads) fields
        """
        self._ensure_writable(path)
        expires_at, expires = _expiration(expiration)
        try:
            if self._temporary_upload_url_builder is not None:
                return await _call(self._temporary_upload_url_builder, path, expires_at, options or {})
            upload: PresignedUpload | None = await self.driver.presign_upload(self.path(path), expires, options=options)
        except Exception as e:
            return self._failed(UnableToGenerateUrlError(path=path), e, None)
        if upload is None:
            raise NotSupportedError("Temporary upload URLs are not supported by this driver", path=path)
        return upload.as_response()


def _expiration(expiration: datetime | timedelta) -> tuple[datetime, timedelta]:
    """Return (moment of expiry, time left); expiry must be in the future"""
    now = datetime.now(UTC)
    if isinstance(expiration, timedelta):
        expires_at, expires = now + expiration, expiration
    else:
        if expiration.tzinfo is None:
            expiration = expiration.astimezone(UTC)
        expires_at, expires = expiration, expiration - now
    if expires.total_seconds() < 1:
        raise ValueError(f"Expiration must be in the future, got {expiration}")
    return expires_at, expires


async def _call(callback: Callable[..., Any], *args: Any) -> Any:
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
