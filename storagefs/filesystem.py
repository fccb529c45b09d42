"""
A hierarchical filesystem on top of a StorageDriver.

CloudFileSystem maps absolute logical paths to backend keys (optionally below a
root prefix) and hands out File, Directory and Link entities. It owns the
ConsistencyCache that hides backend propagation delay from its entities.

The current directory is mutable instance state: do not share one instance
between logically distinct working directory contexts. Every path-taking method
also accepts an explicit base to resolve relative paths against.
"""

from storagefs import paths
from storagefs.cache import ConsistencyCache
from storagefs.drivers.base import StorageDriver
from storagefs.entities import Directory, Entity, File, Link
from storagefs.models import EntityType, StorageStat

DEFAULT_PROBE_TIMEOUT = 5.0

PathLike = str | Entity


class CloudFileSystem:
    def __init__(
        self,
        driver: StorageDriver,
        prefix: str | None = None,
        separator: str | None = None,
        cache: ConsistencyCache | None = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        self.driver = driver
        self.separator = separator or driver.separator
        self.prefix = paths.strip_separators(prefix, self.separator)
        self.cache = cache if cache is not None else ConsistencyCache(separator=self.separator)
        self.probe_timeout = probe_timeout
        self._current_directory = self.separator

    @property
    def current_directory(self) -> Directory:
        return Directory(self, self._current_directory)

    @current_directory.setter
    def current_directory(self, value: PathLike) -> None:
        self._current_directory = self.resolve(value)

    def resolve(self, path: PathLike, base: PathLike | None = None) -> str:
        """Normalize a path, resolving relative paths against base or the current directory"""
        if isinstance(path, Entity):
            path = path.path
        if base is None:
            base = self._current_directory
        elif isinstance(base, Entity):
            base = base.path
        else:
            base = paths.resolve(base, self._current_directory, self.separator)
        return paths.resolve(path, base, self.separator)

    def file(self, path: PathLike, base: PathLike | None = None) -> File:
        return File(self, self.resolve(path, base))

    def directory(self, path: PathLike, base: PathLike | None = None) -> Directory:
        return Directory(self, self.resolve(path, base))

    def link(self, path: PathLike, base: PathLike | None = None) -> Link:
        return Link(self, self.resolve(path, base))

    def to_remote_path(self, path: str) -> str:
        """
        Convert an absolute path into the backend key: strip the leading separator and
        put the root prefix in front (the root itself maps to the bare prefix)
        """
        relative = paths.strip_separators(paths.normalize(path, self.separator), self.separator)
        return paths.join_prefix(self.prefix, relative, separator=self.separator)

    def from_remote_path(self, key: str) -> str:
        """Convert a backend key into an absolute path"""
        relative = paths.relative_to(key, self.prefix, self.separator)
        return paths.normalize(relative, self.separator)

    async def stat(self, path: PathLike, base: PathLike | None = None) -> StorageStat:
        key = self.to_remote_path(self.resolve(path, base))
        stat = await self.driver.stat(key)
        if stat is None:
            return StorageStat(type=EntityType.NOT_FOUND)
        return stat

    async def type(self, path: PathLike, base: PathLike | None = None) -> EntityType:
        return (await self.stat(path, base)).type

    async def is_file(self, path: PathLike, base: PathLike | None = None) -> bool:
        return await self.type(path, base) == EntityType.FILE

    async def is_directory(self, path: PathLike, base: PathLike | None = None) -> bool:
        return await self.type(path, base) == EntityType.DIRECTORY

    async def is_link(self, path: PathLike, base: PathLike | None = None) -> bool:
        return False

    async def identical(self, path1: PathLike, path2: PathLike) -> bool:
        return self.to_remote_path(self.resolve(path1)) == self.to_remote_path(self.resolve(path2))

    def __repr__(self) -> str:
        return f"CloudFileSystem({type(self.driver).__name__}, prefix={self.prefix!r})"
