"""Tests against a real S3-compatible server, configured through STORAGEFS_S3_* settings"""

import secrets
from datetime import timedelta

import httpx
import pytest

from storagefs.config import get_settings, s3_enabled, storage_config_from_settings
from storagefs.manager import FilesystemManager
from storagefs.models import EntityType

if not s3_enabled():
    pytest.skip("S3 not configured, skipping live S3 tests", allow_module_level=True)


@pytest.fixture()
async def cloud():
    config = storage_config_from_settings()
    s3 = config.get_disk("s3").copy_with(prefix=f"storagefs_unittest_{secrets.token_hex(4)}")
    config = config.with_disk("s3", s3.copy_with(options={**s3.options, "auto_create_bucket": True}))
    async with FilesystemManager(config, cache_ttl=get_settings().cache_ttl) as manager:
        disk = manager.cloud()
        await disk.ensure_ready()
        yield disk
        await disk.delete_directory("/")


@pytest.mark.anyio
async def test_round_trip(cloud):
    payload = bytes(range(256)) * 64
    assert await cloud.put("dir/blob.bin", payload)
    assert await cloud.get_bytes("dir/blob.bin") == payload
    assert await cloud.size("dir/blob.bin") == len(payload)
    assert await cloud.directory_exists("dir")


@pytest.mark.anyio
async def test_listing(cloud):
    await cloud.put("dir/a.txt", "a")
    await cloud.put("dir/sub/b.txt", "b")
    names = [entity.basename async for entity in cloud.filesystem.directory("dir").list()]
    assert sorted(names) == ["a.txt", "sub"]


@pytest.mark.anyio
async def test_move(cloud):
    await cloud.put("a.txt", "content")
    result = await cloud.move("a.txt", "b.txt")
    assert result.complete
    assert await cloud.get("b.txt") == "content"
    assert await cloud.file_missing("a.txt")


@pytest.mark.anyio
async def test_presigned_put_then_stat(cloud):
    upload = await cloud.temporary_upload_url("up/file.txt", timedelta(minutes=5), {"content_type": "text/plain"})
    async with httpx.AsyncClient() as client:
        res = await client.put(upload["url"], content=b"uploaded", headers=upload["headers"])
        res.raise_for_status()
    stat = await cloud.filesystem.stat("up/file.txt")
    assert stat.type == EntityType.FILE
    assert stat.size == 8

    url = await cloud.temporary_url("up/file.txt", timedelta(minutes=5))
    async with httpx.AsyncClient() as client:
        res = await client.get(url)
        res.raise_for_status()
    assert res.content == b"uploaded"
