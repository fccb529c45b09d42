"""Filesystem operations on object stores and local directories."""

from storagefs.config import DiskConfig, StorageConfig, Visibility
from storagefs.disk import CloudDisk, Disk
from storagefs.filesystem import CloudFileSystem
from storagefs.manager import FilesystemManager

__all__ = [
    "CloudDisk",
    "CloudFileSystem",
    "Disk",
    "DiskConfig",
    "FilesystemManager",
    "StorageConfig",
    "Visibility",
]
