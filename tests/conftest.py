import pytest

from storagefs.cache import ConsistencyCache
from storagefs.config import DiskConfig, StorageConfig
from storagefs.drivers.local import LocalDriver
from storagefs.drivers.s3 import S3Driver
from storagefs.filesystem import CloudFileSystem
from storagefs.manager import FilesystemManager
from tests.tools import FakeClock, FakeS3Client

TEST_BUCKET = "storagefs-unittest"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def s3_client():
    return FakeS3Client(buckets={TEST_BUCKET})


@pytest.fixture()
def s3_driver(s3_client):
    return S3Driver(bucket=TEST_BUCKET, endpoint="http://localhost:9000", path_style=True, client=s3_client)


@pytest.fixture()
def s3_fs(s3_driver, clock):
    return CloudFileSystem(s3_driver, cache=ConsistencyCache(clock=clock), probe_timeout=0.5)


@pytest.fixture()
def local_driver(tmp_path):
    return LocalDriver(tmp_path / "local", base_url="http://localhost/files")


@pytest.fixture()
def local_fs(local_driver, clock):
    return CloudFileSystem(local_driver, cache=ConsistencyCache(clock=clock))


def s3_disk_config(**kwargs) -> DiskConfig:
    return DiskConfig(
        driver="s3",
        options=dict(
            endpoint="http://localhost:9000",
            key="test",
            secret="test-secret",
            bucket=TEST_BUCKET,
            use_path_style_endpoint=True,
        ),
        **kwargs,
    )


@pytest.fixture()
def storage_config(tmp_path) -> StorageConfig:
    return StorageConfig(
        default_disk="local",
        cloud_disk="s3",
        disks={
            "local": DiskConfig(driver="local", root=str(tmp_path / "local")),
            "s3": s3_disk_config(),
            "strict": s3_disk_config(throw=True),
            "tenant": DiskConfig(driver="scoped", prefix="tenant-1", options={"disk": "s3"}),
            "tenant_private": DiskConfig(
                driver="scoped", prefix="/private/", throw=True, visibility="private", options={"disk": "tenant"}
            ),
        },
    )


@pytest.fixture()
async def manager(storage_config, s3_client):
    """A manager whose S3 disks all talk to the in-memory client"""
    async with FilesystemManager(storage_config, probe_timeout=0.5) as manager:
        manager.extend("s3", lambda config: S3Driver.from_config(config, client=s3_client))
        yield manager
