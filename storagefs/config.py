"""
storagefs configuration

Disks are described by DiskConfig objects, grouped in a StorageConfig. These are
normally built from application configuration by the caller, but a default
StorageConfig can also be derived from the environment (see Settings), read from
2 sources in order of precedence (higher is more priority):
- Environment variables
- A .env file, either in the current working directory or in a location specified
  by the STORAGEFS_ENV_FILE environment variable
"""

import functools
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Mapping, Self

from class_doc import extract_docs_from_cls_obj
from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ENV_PREFIX = "storagefs_"

S3_DRIVERS = frozenset({"s3", "minio", "spaces", "r2"})


class Visibility(str, Enum):
    #: objects can be read by anyone who knows the URL
    public = "public"

    #: objects can only be read with credentials or a presigned URL
    private = "private"


for field, doc in extract_docs_from_cls_obj(Visibility).items():
    Visibility[field].__doc__ = "\n".join(doc)


class DiskConfig(BaseModel):
    """
    Configuration of a single disk. Immutable: use copy_with to derive a new one
    (scoped disks are built from a merged copy of their parent's configuration).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    driver: str = "local"
    root: str | None = None
    url: str | None = None
    visibility: Visibility | None = None
    throw: bool = False
    report: bool = False
    directory_separator: str = "/"
    prefix: str | None = None
    read_only: Annotated[bool, Field(validation_alias=AliasChoices("read_only", "read-only", "readOnly"))] = False
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("directory_separator")
    @classmethod
    def separator_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("directory_separator cannot be empty")
        return value

    @classmethod
    def from_map(cls, data: Mapping[str, Any]) -> "DiskConfig":
        return cls.model_validate(dict(data))

    def to_map(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def copy_with(self, **changes: Any) -> Self:
        return self.model_validate({**self.model_dump(), **changes})

    @property
    def is_s3(self) -> bool:
        return self.driver in S3_DRIVERS

    @property
    def scoped_disk(self) -> str | None:
        return self.options.get("disk")

    # S3-specific option helpers

    @property
    def s3_endpoint(self) -> str | None:
        return self.options.get("endpoint")

    @property
    def s3_access_key(self) -> str | None:
        return self.options.get("key") or self.options.get("access_key")

    @property
    def s3_secret_key(self) -> str | None:
        return self.options.get("secret") or self.options.get("secret_key")

    @property
    def s3_bucket(self) -> str | None:
        return self.options.get("bucket")

    @property
    def s3_region(self) -> str:
        return self.options.get("region") or "us-east-1"

    @property
    def s3_use_ssl(self) -> bool:
        return bool(self.options.get("use_ssl", self.options.get("useSSL", True)))

    @property
    def s3_port(self) -> int | None:
        port = self.options.get("port")
        return int(port) if port is not None else None

    @property
    def s3_session_token(self) -> str | None:
        return self.options.get("token") or self.options.get("session_token")

    @property
    def s3_path_style(self) -> bool:
        return bool(self.options.get("use_path_style_endpoint", False))

    @property
    def s3_auto_create_bucket(self) -> bool:
        return bool(self.options.get("auto_create_bucket", False))

    def __str__(self) -> str:
        return f"DiskConfig(driver={self.driver}, root={self.root}, prefix={self.prefix})"


class StorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_disk: Annotated[str, Field(alias="default")] = "local"
    cloud_disk: Annotated[str | None, Field(alias="cloud")] = None
    disks: dict[str, DiskConfig] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StorageConfig":
        """Read a mapping, either the bare configuration or one nested under 'filesystems'"""
        return cls.model_validate(dict(data.get("filesystems", data)))

    def to_dict(self) -> dict[str, Any]:
        return {"filesystems": self.model_dump(mode="json", by_alias=True, exclude_none=True)}

    def get_disk(self, name: str) -> DiskConfig | None:
        return self.disks.get(name)

    def with_disk(self, name: str, config: DiskConfig) -> "StorageConfig":
        return self.model_copy(update={"disks": {**self.disks, name: config}})


class Settings(BaseSettings):
    env_file: Annotated[
        Path,
        Field(
            description="Location of a .env file (if used) relative to working directory",
        ),
    ] = Path(".env")

    default_disk: Annotated[str, Field(description="Name of the disk returned when no disk name is given")] = "local"

    cloud_disk: Annotated[str, Field(description="Name of the disk that must provide cloud capabilities")] = "s3"

    local_root: Annotated[
        Path,
        Field(description="Root directory of the 'local' disk"),
    ] = Path("storage")

    cache_ttl: Annotated[
        float,
        Field(
            gt=0,
            description=(
                "Seconds that recent creates and deletes are remembered to hide backend propagation delay. "
                "This is a heuristic window, not a consistency guarantee"
            ),
        ),
    ] = 120.0

    probe_timeout: Annotated[
        float,
        Field(gt=0, description="Seconds to wait for a directory existence listing before assuming it is missing"),
    ] = 5.0

    s3_host: Annotated[str | None, Field(description="S3 endpoint, e.g. http://localhost:9000")] = None
    s3_access_key: Annotated[str | None, Field()] = None
    s3_secret_key: Annotated[str | None, Field()] = None
    s3_bucket: Annotated[str, Field(description="Bucket used by the 's3' disk")] = "storagefs"
    s3_region: Annotated[str, Field()] = "us-east-1"
    s3_tls: Annotated[bool | None, Field(description="Use https. Default: derived from the s3_host scheme")] = None
    s3_path_style: Annotated[bool, Field(description="Use path-style instead of virtual-hosted-style URLs")] = True
    s3_auto_create_bucket: Annotated[bool, Field(description="Create the bucket if it does not exist")] = False

    public_url: Annotated[str | None, Field(description="Public base URL of the 's3' disk, if any")] = None

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX)

    @property
    def cache_ttl_delta(self) -> timedelta:
        return timedelta(seconds=self.cache_ttl)


@functools.lru_cache()
def get_settings() -> Settings:
    temp = Settings()
    load_dotenv(temp.env_file, override=False)
    return Settings()


def s3_enabled(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return all([settings.s3_host, settings.s3_access_key, settings.s3_secret_key])


def storage_config_from_settings(settings: Settings | None = None) -> StorageConfig:
    """
    Build the default StorageConfig: a 'local' disk, plus an 's3' disk when S3
    credentials are configured
    """
    settings = settings or get_settings()
    disks = {"local": DiskConfig(driver="local", root=str(settings.local_root))}
    if s3_enabled(settings):
        use_ssl = settings.s3_tls
        if use_ssl is None:
            use_ssl = (settings.s3_host or "").startswith("https://")
        disks["s3"] = DiskConfig(
            driver="s3",
            url=settings.public_url,
            options=dict(
                endpoint=settings.s3_host,
                key=settings.s3_access_key,
                secret=settings.s3_secret_key,
                bucket=settings.s3_bucket,
                region=settings.s3_region,
                use_ssl=use_ssl,
                use_path_style_endpoint=settings.s3_path_style,
                auto_create_bucket=settings.s3_auto_create_bucket,
            ),
        )
    return StorageConfig(default_disk=settings.default_disk, cloud_disk=settings.cloud_disk, disks=disks)


if __name__ == "__main__":
    # Echo the settings
    for k, v in get_settings().model_dump().items():
        print(f"{ENV_PREFIX.upper()}{k.upper()}={v}")
