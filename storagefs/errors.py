"""
Exceptions raised by storagefs.

ConfigurationError, NotSupportedError and ReadOnlyDiskError always propagate.
StorageOperationError (and subclasses) are raised by disks only when their
configuration asks for it (throw=True); otherwise the disk returns a sentinel.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storagefs.models import MoveResult


class StorageError(Exception):
    message = "Storage error"

    def __init__(self, message: str | None = None, path: str | None = None):
        self.path = path
        super().__init__(message or self.message)

    def __str__(self) -> str:
        text = super().__str__()
        if self.path is not None:
            text = f"{text} (path: {self.path})"
        if self.__cause__ is not None:
            text = f"{text}: {self.__cause__}"
        return text


class ConfigurationError(StorageError, ValueError):
    message = "Invalid storage configuration"


class NotSupportedError(StorageError, NotImplementedError):
    message = "Operation not supported"


class CapabilityMismatchError(StorageError, TypeError):
    message = "Disk does not provide the required capabilities"


class StorageOperationError(StorageError):
    message = "Storage operation failed"


class UnableToReadFileError(StorageOperationError):
    message = "Unable to read file"


class UnableToWriteFileError(StorageOperationError):
    message = "Unable to write file"


class ReadOnlyDiskError(StorageOperationError):
    message = "Disk is read-only"


class UnableToDeleteFileError(StorageOperationError):
    message = "Unable to delete file"


class UnableToCopyFileError(StorageOperationError):
    message = "Unable to copy file"

    def __init__(self, source: str, destination: str):
        super().__init__(f"Unable to copy file from {source} to {destination}")
        self.source = source
        self.destination = destination


class UnableToMoveFileError(StorageOperationError):
    message = "Unable to move file"

    def __init__(self, result: "MoveResult"):
        state = "copied but not deleted" if result.copied else "not copied"
        super().__init__(f"Unable to move file from {result.source} to {result.destination} ({state})")
        self.result = result


class UnableToCreateDirectoryError(StorageOperationError):
    message = "Unable to create directory"


class UnableToDeleteDirectoryError(StorageOperationError):
    message = "Unable to delete directory"


class DirectoryNotEmptyError(StorageOperationError):
    message = "Directory not empty"


class UnableToRetrieveMetadataError(StorageOperationError):
    message = "Unable to retrieve metadata"


class UnableToListContentsError(StorageOperationError):
    message = "Unable to list contents"


class UnableToSetVisibilityError(StorageOperationError):
    message = "Unable to set visibility"


class UnableToProvideChecksumError(StorageOperationError):
    message = "Unable to provide checksum"


class UnableToGenerateUrlError(StorageOperationError):
    message = "Unable to generate temporary URL"
