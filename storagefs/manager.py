"""
Compose named disks from a StorageConfig.

Drivers are looked up by their type tag: custom creators registered with extend()
first, then the built-in 'local', 'scoped' and S3 family ('s3', 'minio', 'spaces',
'r2'). Disks resolved by name are memoised until forgotten or purged.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping, Self

from storagefs import paths
from storagefs.cache import DEFAULT_TTL, ConsistencyCache
from storagefs.config import S3_DRIVERS, DiskConfig, StorageConfig, get_settings, storage_config_from_settings
from storagefs.disk import CloudDisk, Disk
from storagefs.drivers.base import StorageDriver
from storagefs.drivers.local import LocalDriver
from storagefs.drivers.s3 import S3Driver
from storagefs.errors import CapabilityMismatchError, ConfigurationError
from storagefs.filesystem import DEFAULT_PROBE_TIMEOUT, CloudFileSystem

logger = logging.getLogger("storagefs.manager")

DEFAULT_CLOUD_DISK = "s3"

# A creator receives the disk configuration and returns a ready Disk, or a driver to wrap in one
DiskCreator = Callable[[DiskConfig], Disk | StorageDriver]


class FilesystemManager:
    def __init__(
        self,
        config: StorageConfig | Mapping[str, Any] | None = None,
        cache_ttl: timedelta | float = DEFAULT_TTL,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        if config is None:
            config = storage_config_from_settings()
        elif not isinstance(config, StorageConfig):
            config = StorageConfig.from_dict(config)
        self.config = config
        self.cache_ttl = cache_ttl
        self.probe_timeout = probe_timeout
        self._disks: dict[str, Disk] = {}
        self._custom_creators: dict[str, DiskCreator] = {}

    @classmethod
    def from_settings(cls) -> "FilesystemManager":
        settings = get_settings()
        return cls(storage_config_from_settings(settings), cache_ttl=settings.cache_ttl, probe_timeout=settings.probe_timeout)

    @property
    def default_disk(self) -> str:
        return self.config.default_disk

    def disk(self, name: str | None = None) -> Disk:
        """The disk with the given name (or the default disk), built on first use"""
        name = name or self.default_disk
        if name not in self._disks:
            self._disks[name] = self._resolve(name)
        return self._disks[name]

    drive = disk

    def cloud(self, name: str | None = None) -> CloudDisk:
        """The cloud disk: a disk that can provide public and temporary URLs"""
        name = name or self.config.cloud_disk or DEFAULT_CLOUD_DISK
        disk = self.disk(name)
        if not isinstance(disk, CloudDisk):
            raise CapabilityMismatchError(f"Disk [{name}] does not provide cloud capabilities")
        return disk

    def build(self, config: str | DiskConfig | Mapping[str, Any]) -> Disk:
        """
        Build an unnamed, unmemoised disk. A string is taken as the root of a local disk.
        """
        if isinstance(config, str):
            config = DiskConfig(driver="local", root=config)
        elif not isinstance(config, DiskConfig):
            config = DiskConfig.from_map(config)
        return self._resolve_config("ondemand", config)

    def extend(self, driver: str, creator: DiskCreator) -> Self:
        """Register a creator for a driver type; custom creators take precedence over built-ins"""
        self._custom_creators[driver] = creator
        return self

    def set(self, name: str, disk: Disk) -> Self:
        self._disks[name] = disk
        return self

    def forget_disk(self, names: str | Iterable[str]) -> Self:
        """
        Remove memoised disks so that they are rebuilt on next use.
        Forgotten disks are not closed; use aclose on the disk if needed.
        """
        if isinstance(names, str):
            names = [names]
        for name in names:
            self._disks.pop(name, None)
        return self

    def purge(self, name: str | None = None) -> None:
        self.forget_disk(name or self.default_disk)

    def _resolve(self, name: str) -> Disk:
        config = self.config.get_disk(name)
        if config is None:
            raise ConfigurationError(f"Disk [{name}] does not have a configured driver")
        return self._resolve_config(name, config)

    def _resolve_config(self, name: str, config: DiskConfig) -> Disk:
        logger.debug(f"Resolving disk {name} ({config})")
        if creator := self._custom_creators.get(config.driver):
            result = creator(config)
            if isinstance(result, StorageDriver):
                return self._make_disk(name, config, result)
            return result
        if config.driver == "local":
            return self._make_disk(name, config, LocalDriver.from_config(config))
        if config.driver == "scoped":
            return self._resolve_scoped(name, config)
        if config.driver in S3_DRIVERS:
            return self._make_disk(name, config, S3Driver.from_config(config))
        raise ConfigurationError(f"Driver [{config.driver}] is not supported")

    def _resolve_scoped(self, name: str, config: DiskConfig) -> Disk:
        """
        A scoped disk is a view on its parent disk below a prefix: walk up the chain of
        scoped parents, composing prefixes, and resolve the first non-scoped configuration
        """
        seen: set[str] = set()
        while config.driver == "scoped":
            parent_name = config.scoped_disk
            if not parent_name:
                raise ConfigurationError(f"Scoped disk [{name}] is missing the 'disk' option")
            if not config.prefix:
                raise ConfigurationError(f"Scoped disk [{name}] is missing the 'prefix' option")
            if parent_name in seen:
                raise ConfigurationError(f"Scoped disk [{name}] has a cycle in its parent disks at [{parent_name}]")
            seen.add(parent_name)
            parent = self.config.get_disk(parent_name)
            if parent is None:
                raise ConfigurationError(f"Disk [{parent_name}] does not have a configured driver")
            separator = parent.directory_separator
            changes: dict[str, Any] = dict(
                prefix=paths.join_prefix(parent.prefix, config.prefix, separator=separator),
                throw=parent.throw or config.throw,
                report=parent.report or config.report,
                read_only=parent.read_only or config.read_only,
            )
            if config.visibility is not None:
                changes["visibility"] = config.visibility
            config = parent.copy_with(**changes)
        return self._resolve_config(name, config)

    def _make_disk(self, name: str, config: DiskConfig, driver: StorageDriver) -> Disk:
        separator = config.directory_separator
        filesystem = CloudFileSystem(
            driver,
            prefix=config.prefix,
            separator=separator,
            cache=ConsistencyCache(ttl=self.cache_ttl, separator=separator),
            probe_timeout=self.probe_timeout,
        )
        disk_class = CloudDisk if driver.supports_temporary_urls else Disk
        return disk_class(filesystem, config, name=name)

    async def aclose(self) -> None:
        """Close the drivers of all memoised disks"""
        disks, self._disks = list(self._disks.values()), {}
        for disk in disks:
            await disk.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
