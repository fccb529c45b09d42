"""
Driver for S3-compatible object storage (e.g., AWS S3, MinIO, SeaweedFS, Cloudflare R2).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any, AsyncIterator, Iterable, Mapping
from urllib.parse import quote, urlsplit

import async_lru
from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import ClientError
from types_aiobotocore_s3.client import S3Client
from types_aiobotocore_s3.type_defs import ObjectIdentifierTypeDef

from storagefs.config import DiskConfig, Visibility
from storagefs.drivers.base import ByteSource, StorageDriver, expiry_seconds, read_all
from storagefs.errors import ConfigurationError, StorageOperationError
from storagefs.models import EntityType, PresignedUpload, StorageItem, StorageStat

logger = logging.getLogger("storagefs.s3")

MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
DELETE_BATCH_SIZE = 1000
ALL_USERS_GROUP = "http://acs.amazonaws.com/groups/global/AllUsers"

# options for presign_download that are passed on as response overrides
PRESIGN_GET_OPTIONS = {
    "version_id": "VersionId",
    "content_type": "ResponseContentType",
    "content_disposition": "ResponseContentDisposition",
    "cache_control": "ResponseCacheControl",
}


def is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in MISSING_CODES


@async_lru.alru_cache(maxsize=1000)
async def _create_or_get_bucket(client: S3Client, bucket: str) -> str:
    try:
        await client.head_bucket(Bucket=bucket)
    except ClientError as e:
        error = e.response.get("Error", {})
        if error.get("Code") in ("404", "NoSuchBucket"):
            logger.info(f"Creating bucket {bucket}")
            await client.create_bucket(Bucket=bucket)
        else:
            raise
    return bucket


class S3Driver(StorageDriver):
    def __init__(
        self,
        bucket: str,
        endpoint: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        session_token: str | None = None,
        region: str = "us-east-1",
        use_ssl: bool = True,
        port: int | None = None,
        base_url: str | None = None,
        path_style: bool = False,
        auto_create_bucket: bool = False,
        client: S3Client | None = None,
        chunk_size: int = 64 * 1024,
    ):
        if not bucket:
            raise ConfigurationError("S3 driver requires a bucket")
        self.bucket = bucket
        self.endpoint = endpoint
        self.access_key = access_key
        self.secret_key = secret_key
        self.session_token = session_token
        self.region = region
        self.use_ssl = use_ssl
        self.port = port
        self.base_url = base_url
        self.path_style = path_style
        self.auto_create_bucket = auto_create_bucket
        self.chunk_size = chunk_size
        self._client = client
        self._context_stack: AsyncExitStack | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: DiskConfig, client: S3Client | None = None) -> S3Driver:
        if not config.options:
            raise ConfigurationError("Cloud storage requires configuration options")
        if not config.s3_bucket:
            raise ConfigurationError("S3 disk is missing the 'bucket' option")
        if client is None and not config.s3_endpoint and not config.s3_access_key:
            logger.debug("No S3 endpoint or key configured, relying on the default AWS credential chain")
        return cls(
            bucket=config.s3_bucket,
            endpoint=config.s3_endpoint,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            session_token=config.s3_session_token,
            region=config.s3_region,
            use_ssl=config.s3_use_ssl,
            port=config.s3_port,
            base_url=config.url or config.options.get("url") or config.options.get("base_url"),
            path_style=config.s3_path_style,
            auto_create_bucket=config.s3_auto_create_bucket,
            client=client,
        )

    @property
    def endpoint_url(self) -> str | None:
        if not self.endpoint:
            return None
        endpoint = self.endpoint.rstrip("/")
        if "://" not in endpoint:
            endpoint = f"{'https' if self.use_ssl else 'http'}://{endpoint}"
        if self.port is not None and urlsplit(endpoint).port is None:
            endpoint = f"{endpoint}:{self.port}"
        return endpoint

    async def client(self) -> S3Client:
        """
        The S3 client, started on first use. The client is an async context manager,
        so we use an AsyncExitStack to manage its lifetime (see aclose).
        """
        async with self._client_lock:
            if self._client is None:
                session = get_session()
                client = session.create_client(
                    service_name="s3",
                    endpoint_url=self.endpoint_url,
                    region_name=self.region,
                    aws_access_key_id=self.access_key,
                    aws_secret_access_key=self.secret_key,
                    aws_session_token=self.session_token,
                    config=AioConfig(
                        signature_version="s3v4",
                        s3={"addressing_style": "path" if self.path_style else "auto"},
                    ),
                )
                logger.debug(f"Connecting with S3 at {self.endpoint_url or 'aws'}, bucket {self.bucket}")
                self._context_stack = AsyncExitStack()
                self._client = await self._context_stack.enter_async_context(client)
            return self._client

    async def aclose(self) -> None:
        if self._context_stack is not None:
            await self._context_stack.aclose()
            self._context_stack = None
            self._client = None

    async def ensure_ready(self) -> None:
        if self.auto_create_bucket:
            await _create_or_get_bucket(await self.client(), self.bucket)

    async def stat(self, key: str) -> StorageStat | None:
        """
        Probe a key in at most two round trips: an exact match means a file,
        otherwise any object below key/ means a virtual directory
        """
        if not key:
            return StorageStat(type=EntityType.DIRECTORY)
        client = await self.client()
        if not key.endswith(self.separator):
            try:
                head = await client.head_object(Bucket=self.bucket, Key=key)
                return StorageStat(
                    type=EntityType.FILE, size=head.get("ContentLength", 0), modified=head.get("LastModified")
                )
            except ClientError as e:
                if not is_missing(e):
                    raise
        prefix = key if key.endswith(self.separator) else key + self.separator
        res = await client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=1)
        if any(content.get("Key", "").startswith(prefix) for content in res.get("Contents", [])):
            return StorageStat(type=EntityType.DIRECTORY)
        return None

    async def list(self, prefix: str, recursive: bool = False) -> AsyncIterator[StorageItem]:
        sep = self.separator
        query = prefix if not prefix or prefix.endswith(sep) else prefix + sep
        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": query}
        if not recursive:
            params["Delimiter"] = sep

        client = await self.client()
        paginator = client.get_paginator("list_objects_v2")
        seen: set[str] = set()

        def new_directory(path: str) -> StorageItem | None:
            if not path or path in seen:
                return None
            seen.add(path)
            return StorageItem(path=path, is_directory=True)

        async for page in paginator.paginate(**params):
            for common_prefix in page.get("CommonPrefixes", []):
                item = new_directory(common_prefix.get("Prefix", "")[len(query) :].rstrip(sep))
                if item is not None:
                    yield item
            for content in page.get("Contents", []):
                if "Key" not in content:
                    continue
                relative = content["Key"][len(query) :]
                if not relative:
                    continue
                is_dir = relative.endswith(sep)
                relative = relative.rstrip(sep)
                if recursive:
                    parts = relative.split(sep)
                    for i in range(1, len(parts)):
                        item = new_directory(sep.join(parts[:i]))
                        if item is not None:
                            yield item
                if is_dir:
                    item = new_directory(relative)
                    if item is not None:
                        yield item
                else:
                    yield StorageItem(
                        path=relative,
                        is_directory=False,
                        size=content.get("Size"),
                        modified=content.get("LastModified"),
                    )

    async def upload(
        self,
        key: str,
        data: ByteSource,
        length: int | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": await read_all(data)}
        if length is not None:
            params["ContentLength"] = length
        metadata = dict(metadata or {})
        content_type = metadata.pop("content_type", None)
        if content_type:
            params["ContentType"] = content_type
        visibility = metadata.pop("visibility", None)
        if visibility:
            params["ACL"] = _acl(Visibility(visibility))
        if metadata:
            # S3 metadata keys and values must be strings
            params["Metadata"] = {str(k): str(v) for k, v in metadata.items()}
        await (await self.client()).put_object(**params)

    async def download(self, key: str) -> AsyncIterator[bytes]:
        return await self._open_body(Bucket=self.bucket, Key=key)

    async def download_range(self, key: str, start: int | None = None, end: int | None = None) -> AsyncIterator[bytes]:
        if start is None:
            return await self.download(key)
        if end is not None and end < start:
            raise ValueError(f"Invalid range: end ({end}) before start ({start})")
        if end == start:
            return _empty()
        byte_range = f"bytes={start}-" if end is None else f"bytes={start}-{end - 1}"
        return await self._open_body(Bucket=self.bucket, Key=key, Range=byte_range)

    async def _open_body(self, **params: Any) -> BodyStream:
        response = await (await self.client()).get_object(**params)
        stack = AsyncExitStack()
        body = await stack.enter_async_context(response["Body"])
        chunks = body.iter_chunks(self.chunk_size)
        stack.push_async_callback(chunks.aclose)
        return BodyStream(chunks, stack)

    async def delete(self, key: str) -> None:
        await (await self.client()).delete_object(Bucket=self.bucket, Key=key)

    async def delete_many(self, keys: Iterable[str]) -> None:
        client = await self.client()
        to_delete: list[ObjectIdentifierTypeDef] = [{"Key": key} for key in keys]
        for i in range(0, len(to_delete), DELETE_BATCH_SIZE):
            batch = to_delete[i : i + DELETE_BATCH_SIZE]
            res = await client.delete_objects(Bucket=self.bucket, Delete={"Objects": batch, "Quiet": True})
            errors = res.get("Errors", [])
            if errors:
                failed = ", ".join(f"{e.get('Key')} ({e.get('Code')})" for e in errors)
                raise StorageOperationError(f"Could not delete {len(errors)} objects: {failed}")

    async def copy(self, source: str, destination: str) -> None:
        await (await self.client()).copy_object(
            Bucket=self.bucket, Key=destination, CopySource={"Bucket": self.bucket, "Key": source}
        )

    def public_url(self, key: str) -> str | None:
        path = quote(key, safe="/~")
        if self.base_url:
            base = self.base_url.rstrip("/")
            return f"{base}/{path}" if path else base

        endpoint = self.endpoint_url
        if endpoint is None:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"

        parts = urlsplit(endpoint)
        port = f":{parts.port}" if parts.port and parts.port not in (80, 443) else ""
        if self.path_style:
            return f"{parts.scheme}://{parts.hostname}{port}/{self.bucket}/{path}"
        return f"{parts.scheme}://{self.bucket}.{parts.hostname}{port}/{path}"

    @property
    def supports_temporary_urls(self) -> bool:
        return True

    async def presign_download(
        self, key: str, expires: timedelta, options: Mapping[str, Any] | None = None
    ) -> str | None:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        for option, param in PRESIGN_GET_OPTIONS.items():
            params[param] = (options or {}).get(option)
        params = {k: v for k, v in params.items() if v is not None}
        return await (await self.client()).generate_presigned_url(
            "get_object", Params=params, ExpiresIn=expiry_seconds(expires)
        )

    async def presign_upload(
        self, key: str, expires: timedelta, options: Mapping[str, Any] | None = None
    ) -> PresignedUpload | None:
        """
        Presign a direct upload. By default this is a PUT url; pass {"method": "POST"} for
        a browser form upload, optionally limited by content_type and (max) size.
        """
        options = dict(options or {})
        seconds = expiry_seconds(expires)
        content_type = options.get("content_type") or ""
        client = await self.client()

        if str(options.get("method", "PUT")).upper() == "POST":
            conditions: list[Any] = [{"bucket": self.bucket}]
            fields: dict[str, str] = {}
            if content_type:
                conditions.append(["starts-with", "$Content-Type", content_type])
                fields["Content-Type"] = content_type
            if options.get("size") is not None:
                conditions.append(["content-length-range", 0, int(options["size"])])
            pp = await client.generate_presigned_post(
                Bucket=self.bucket, Key=key, Fields=fields, Conditions=conditions, ExpiresIn=seconds
            )
            return PresignedUpload(url=pp["url"], method="POST", fields=pp["fields"])

        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        headers: dict[str, str] = {}
        if content_type:
            params["ContentType"] = content_type
            headers["Content-Type"] = content_type
        url = await client.generate_presigned_url("put_object", Params=params, ExpiresIn=seconds)
        return PresignedUpload(url=url, method="PUT", headers=headers)

    async def get_visibility(self, key: str) -> Visibility:
        acl = await (await self.client()).get_object_acl(Bucket=self.bucket, Key=key)
        for grant in acl.get("Grants", []):
            grantee = grant.get("Grantee", {})
            if grantee.get("URI") == ALL_USERS_GROUP and grant.get("Permission") in ("READ", "FULL_CONTROL"):
                return Visibility.public
        return Visibility.private

    async def set_visibility(self, key: str, visibility: Visibility) -> None:
        await (await self.client()).put_object_acl(Bucket=self.bucket, Key=key, ACL=_acl(visibility))


def _acl(visibility: Visibility) -> str:
    return "public-read" if visibility == Visibility.public else "private"


async def _empty() -> AsyncIterator[bytes]:
    return
    yield


class BodyStream:
    """
    The chunks of a get_object response. The connection is released once iteration stops,
    or on aclose even if iteration never started.
    """

    def __init__(self, chunks: AsyncIterator[bytes], stack: AsyncExitStack):
        self._chunks = chunks
        self._stack = stack

    def __aiter__(self) -> BodyStream:
        return self

    async def __anext__(self) -> bytes:
        try:
            return await anext(self._chunks)
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        await self._stack.aclose()
