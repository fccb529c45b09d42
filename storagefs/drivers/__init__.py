"""Storage drivers: one per backend type."""

from storagefs.drivers.base import StorageDriver
from storagefs.drivers.local import LocalDriver
from storagefs.drivers.s3 import S3Driver

__all__ = ["LocalDriver", "S3Driver", "StorageDriver"]
