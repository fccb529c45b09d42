import pytest
from botocore.exceptions import ClientError

from storagefs.cache import ConsistencyCache
from storagefs.entities import Directory, File
from storagefs.errors import DirectoryNotEmptyError, NotSupportedError
from storagefs.filesystem import CloudFileSystem
from storagefs.models import EntityType
from tests.conftest import TEST_BUCKET
from tests.tools import client_error

PAYLOADS = [
    pytest.param(b"", id="empty"),
    pytest.param(b"hello world", id="small"),
    pytest.param(bytes(range(256)) * 50, id="binary-12.5KB"),
    pytest.param(("line of text\n" * 1000).encode("utf-8"), id="text-13KB"),
]


def test_key_mapping(s3_driver):
    fs = CloudFileSystem(s3_driver)
    assert fs.to_remote_path("/dir/a.txt") == "dir/a.txt"
    assert fs.to_remote_path("/") == ""
    assert fs.from_remote_path("dir/a.txt") == "/dir/a.txt"

    scoped = CloudFileSystem(s3_driver, prefix="/tenant-1/")
    assert scoped.prefix == "tenant-1"
    assert scoped.to_remote_path("/file.txt") == "tenant-1/file.txt"
    assert scoped.to_remote_path("/") == "tenant-1"
    assert scoped.from_remote_path("tenant-1/dir/a.txt") == "/dir/a.txt"
    assert scoped.directory("/dir").remote_path == "tenant-1/dir/"
    assert scoped.directory("/").remote_path == "tenant-1/"


def test_current_directory(s3_fs):
    assert s3_fs.current_directory.path == "/"
    s3_fs.current_directory = "dir"
    assert s3_fs.current_directory.path == "/dir"
    assert s3_fs.file("a.txt").path == "/dir/a.txt"
    assert s3_fs.file("../b.txt").path == "/b.txt"
    # an explicit base overrides the shared pointer
    assert s3_fs.file("a.txt", base="/other").path == "/other/a.txt"
    assert s3_fs.directory("/abs").path == "/abs"


def test_entities(s3_fs):
    file = s3_fs.file("/dir/sub/b.txt")
    assert file.basename == "b.txt"
    assert file.dirname == "/dir/sub"
    assert file.parent == s3_fs.directory("/dir/sub")
    assert file.uri == f"http://localhost:9000/{TEST_BUCKET}/dir/sub/b.txt"
    assert s3_fs.directory("/dir").child_file("a.txt") == s3_fs.file("/dir/a.txt")
    assert s3_fs.directory("/dir").child_directory("sub").path == "/dir/sub"
    assert s3_fs.directory("/").is_root


@pytest.mark.anyio
@pytest.mark.parametrize("payload", PAYLOADS)
async def test_round_trip(s3_fs, payload):
    file = await s3_fs.file("/data/blob").write_bytes(payload)
    assert await file.read_bytes() == payload
    assert await file.length() == len(payload)


@pytest.mark.anyio
@pytest.mark.parametrize("payload", PAYLOADS)
async def test_round_trip_local(local_fs, payload):
    file = await local_fs.file("/data/blob").write_bytes(payload)
    assert await file.read_bytes() == payload


@pytest.mark.anyio
async def test_text(s3_fs):
    file = await s3_fs.file("/notes.txt").write_text("één\ntwee\n")
    assert await file.read_text() == "één\ntwee\n"
    assert await file.read_lines() == ["één", "twee"]


@pytest.mark.anyio
async def test_write_stream_and_open_read(s3_fs):
    async def chunks():
        for i in range(3):
            yield f"chunk{i};".encode()

    file = await s3_fs.file("/stream.txt").write_stream(chunks())
    assert await file.read_text() == "chunk0;chunk1;chunk2;"
    assert b"".join([c async for c in file.open_read(7, 13)]) == b"chunk1"


@pytest.mark.anyio
async def test_file_exists_uses_cache(s3_fs, s3_client):
    file = await s3_fs.file("/a.txt").write_text("x")
    s3_client.calls.clear()
    assert await file.exists()
    assert s3_client.calls == []
    await file.delete()
    assert not await file.exists()


@pytest.mark.anyio
async def test_file_create(s3_fs):
    file = await s3_fs.file("/empty").create()
    assert await file.read_bytes() == b""
    with pytest.raises(FileExistsError):
        await file.create(exclusive=True)


@pytest.mark.anyio
async def test_missing_file(s3_fs):
    file = s3_fs.file("/missing")
    assert not await file.exists()
    with pytest.raises(FileNotFoundError):
        await file.length()
    assert (await file.stat()).type == EntityType.NOT_FOUND


@pytest.mark.anyio
async def test_stat_and_types(s3_fs):
    await s3_fs.file("/dir/a.txt").write_text("a")
    assert await s3_fs.type("/dir/a.txt") == EntityType.FILE
    assert await s3_fs.type("/dir") == EntityType.DIRECTORY
    assert await s3_fs.type("/nope") == EntityType.NOT_FOUND
    assert await s3_fs.is_file("/dir/a.txt")
    assert await s3_fs.is_directory("/dir")
    assert not await s3_fs.is_link("/dir/a.txt")
    assert await s3_fs.identical("/dir/a.txt", "/dir/./sub/../a.txt")


@pytest.mark.anyio
async def test_directory_create_is_cached(s3_fs, s3_client, clock):
    directory = await s3_fs.directory("/new/dir").create()
    # nothing is written to the backend
    assert s3_client.objects(TEST_BUCKET) == {}
    assert await directory.exists()
    assert s3_fs.cache.is_created("new/dir/")
    # after the ttl, the (empty) backend decides
    clock.advance(121)
    assert not await directory.exists()


@pytest.mark.anyio
async def test_directory_create_recursive(s3_fs):
    await s3_fs.directory("/a/b/c").create(recursive=True)
    for key in ["a/", "a/b/", "a/b/c/"]:
        assert s3_fs.cache.is_created(key)
    assert await s3_fs.directory("/a/b").exists()


@pytest.mark.anyio
async def test_file_create_does_not_create_directory(s3_fs):
    await s3_fs.file("/a.txt").write_text("a")
    await s3_fs.directory("/d").create()
    assert not await s3_fs.directory("/a.txt").exists()
    assert not await s3_fs.file("/d").exists()
    assert await s3_fs.directory("/d").exists()
    await s3_fs.file("/a.txt").delete()
    assert not await s3_fs.file("/a.txt").exists()
    assert await s3_fs.directory("/d").exists()


@pytest.mark.anyio
async def test_directory_exists_listing(s3_fs, s3_client):
    await s3_client.put_object(Bucket=TEST_BUCKET, Key="dir/sub/b.txt", Body=b"b")
    assert await s3_fs.directory("/dir").exists()
    assert await s3_fs.directory("/dir/sub").exists()
    assert not await s3_fs.directory("/di").exists()
    assert await s3_fs.directory("/").exists()


@pytest.mark.anyio
async def test_directory_exists_timeout(s3_fs, s3_client):
    await s3_client.put_object(Bucket=TEST_BUCKET, Key="dir/a.txt", Body=b"a")
    s3_client.list_delay = 2
    assert not await s3_fs.directory("/dir").exists()


@pytest.mark.anyio
async def test_directory_exists_errors_propagate(s3_fs, s3_client):
    s3_client.fail("list_objects_v2", client_error("AccessDenied", "ListObjectsV2"))
    with pytest.raises(Exception, match="AccessDenied"):
        await s3_fs.directory("/dir").exists()


@pytest.mark.anyio
async def test_list(s3_fs):
    await s3_fs.file("/dir/a.txt").write_text("a")
    await s3_fs.file("/dir/sub/b.txt").write_text("b")
    entries = [entity async for entity in s3_fs.directory("/dir").list()]
    assert sorted(entries, key=lambda e: e.path) == [s3_fs.file("/dir/a.txt"), s3_fs.directory("/dir/sub")]
    assert {e.basename for e in entries} == {"a.txt", "sub"}
    entries = [entity async for entity in s3_fs.directory("/dir").list(recursive=True)]
    assert entries == [s3_fs.file("/dir/a.txt"), s3_fs.directory("/dir/sub"), s3_fs.file("/dir/sub/b.txt")]
    assert all(isinstance(e, (File, Directory)) for e in entries)


@pytest.mark.anyio
async def test_list_scoped(s3_driver, s3_client):
    fs = CloudFileSystem(s3_driver, prefix="tenant-1")
    await fs.file("/dir/a.txt").write_text("a")
    assert "tenant-1/dir/a.txt" in s3_client.objects(TEST_BUCKET)
    assert [e.path async for e in fs.directory("/").list()] == ["/dir"]
    assert [e.path async for e in fs.directory("/dir").list()] == ["/dir/a.txt"]


@pytest.mark.anyio
async def test_directory_delete(s3_fs, s3_client):
    await s3_fs.file("/dir/a.txt").write_text("a")
    await s3_fs.file("/dir/sub/b.txt").write_text("b")
    await s3_fs.file("/dirt.txt").write_text("c")
    directory = s3_fs.directory("/dir")
    with pytest.raises(DirectoryNotEmptyError):
        await directory.delete()
    await directory.delete(recursive=True)
    assert list(s3_client.objects(TEST_BUCKET)) == ["dirt.txt"]
    assert not await directory.exists()
    assert not await s3_fs.file("/dir/sub/b.txt").exists()
    # an empty directory can be deleted without recursive
    await s3_fs.directory("/empty").create()
    await s3_fs.directory("/empty").delete()
    assert not await s3_fs.directory("/empty").exists()


@pytest.mark.anyio
async def test_directory_delete_local(local_fs, local_driver):
    await local_fs.file("/dir/a.txt").write_text("a")
    await local_fs.file("/dir/sub/b.txt").write_text("b")
    await local_fs.directory("/dir").delete(recursive=True)
    assert not (local_driver.root / "dir").exists()


@pytest.mark.anyio
async def test_delete_then_recreate(s3_fs):
    directory = await s3_fs.directory("/x").create()
    await directory.delete()
    assert not await directory.exists()
    await directory.create()
    assert await directory.exists()


@pytest.mark.anyio
async def test_file_rename(s3_fs, s3_client):
    await s3_fs.file("/a.txt").write_text("content")
    result = await s3_fs.file("/a.txt").rename("/moved/b.txt")
    assert result.complete and result
    assert result.source == "/a.txt" and result.destination == "/moved/b.txt"
    assert list(s3_client.objects(TEST_BUCKET)) == ["moved/b.txt"]
    assert await s3_fs.file("/moved/b.txt").read_text() == "content"
    assert not await s3_fs.file("/a.txt").exists()


@pytest.mark.anyio
async def test_file_rename_delete_fails(s3_fs, s3_client):
    await s3_fs.file("/a.txt").write_text("content")
    s3_client.fail("delete_object")
    result = await s3_fs.file("/a.txt").rename("/b.txt")
    assert result.copied and not result.deleted and not result.complete
    assert result.error is not None
    # both objects are present
    assert sorted(s3_client.objects(TEST_BUCKET)) == ["a.txt", "b.txt"]
    assert await s3_fs.file("/a.txt").exists()
    assert await s3_fs.file("/b.txt").exists()


@pytest.mark.anyio
async def test_file_rename_copy_fails(s3_fs, s3_client):
    await s3_fs.file("/a.txt").write_text("content")
    s3_client.fail("copy_object")
    with pytest.raises(ClientError):
        await s3_fs.file("/a.txt").rename("/b.txt")
    assert list(s3_client.objects(TEST_BUCKET)) == ["a.txt"]


@pytest.mark.anyio
async def test_directory_rename(s3_fs, s3_client):
    await s3_fs.file("/dir/a.txt").write_text("a")
    await s3_fs.file("/dir/sub/b.txt").write_text("b")
    result = await s3_fs.directory("/dir").rename("/new")
    assert result.complete
    assert sorted(s3_client.objects(TEST_BUCKET)) == ["new/a.txt", "new/sub/b.txt"]
    assert await s3_fs.directory("/new/sub").exists()
    assert not await s3_fs.directory("/dir").exists()


@pytest.mark.anyio
async def test_links_not_supported(s3_fs):
    link = s3_fs.link("/link")
    assert not await link.exists()
    with pytest.raises(NotSupportedError):
        await link.create("/target")
    with pytest.raises(NotSupportedError):
        await link.target()


@pytest.mark.anyio
async def test_own_cache_per_filesystem(s3_driver):
    a = CloudFileSystem(s3_driver)
    b = CloudFileSystem(s3_driver, cache=ConsistencyCache(ttl=10))
    await a.directory("/only-in-a").create()
    assert await a.directory("/only-in-a").exists()
    assert not await b.directory("/only-in-a").exists()
