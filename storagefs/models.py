from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    LINK = "link"
    NOT_FOUND = "not_found"


class StorageStat(BaseModel):
    """Metadata a driver reports for a single key."""

    model_config = ConfigDict(frozen=True)

    type: EntityType
    size: int = 0
    modified: datetime | None = None


class StorageItem(BaseModel):
    """
    One entry of a driver listing. path is relative to the listing prefix and never
    carries a trailing separator; is_directory tells virtual directories apart.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    is_directory: bool = False
    size: int | None = None
    modified: datetime | None = None


class PresignedUpload(BaseModel):
    """Everything an external HTTP client needs to upload directly to the backend."""

    url: str
    method: Literal["PUT", "POST"] = "PUT"
    headers: dict[str, str] = Field(default_factory=dict)
    fields: dict[str, str] = Field(default_factory=dict)

    def as_response(self) -> dict:
        response: dict = {"url": self.url, "headers": dict(self.headers)}
        if self.fields:
            response["fields"] = dict(self.fields)
        return response


class MoveResult(BaseModel):
    """
    Outcome of a copy-then-delete move. Moving is not atomic: when the copy succeeded
    but the delete failed, both source and destination exist and error holds the cause.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source: str
    destination: str
    copied: bool = False
    deleted: bool = False
    error: BaseException | None = Field(default=None, exclude=True)

    @property
    def complete(self) -> bool:
        return self.copied and self.deleted

    def __bool__(self) -> bool:
        return self.complete
