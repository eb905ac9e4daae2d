from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from knowledge_pipeline.adapters.s3 import S3ObjectStore
from knowledge_pipeline.core.config import StorageSettings
from knowledge_pipeline.ingestion.errors import StorageError

pytestmark = pytest.mark.unit


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakeS3Client:
    def __init__(self, backend: FakeS3Backend) -> None:
        self._backend = backend

    async def __aenter__(self) -> FakeS3Client:
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def head_bucket(self, Bucket: str) -> dict:
        if Bucket not in self._backend.buckets:
            raise _client_error("404", "HeadBucket")
        return {}

    async def create_bucket(self, Bucket: str) -> dict:
        self._backend.buckets.add(Bucket)
        return {}

    async def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str) -> dict:
        if self._backend.fail_writes:
            raise _client_error("SlowDown", "PutObject")
        self._backend.objects[(Bucket, Key)] = (Body, ContentType)
        return {}

    async def get_object(self, Bucket: str, Key: str) -> dict:
        if (Bucket, Key) not in self._backend.objects:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": FakeBody(self._backend.objects[(Bucket, Key)][0])}

    async def delete_object(self, Bucket: str, Key: str) -> dict:
        self._backend.objects.pop((Bucket, Key), None)
        return {}


class FakeS3Backend:
    """Stands in for ``aioboto3.Session``."""

    def __init__(self) -> None:
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.fail_writes = False
        self.client_kwargs: list[dict] = []

    def client(self, service_name: str, **kwargs) -> FakeS3Client:
        self.client_kwargs.append({"service_name": service_name, **kwargs})
        return FakeS3Client(self)


@pytest.fixture()
def settings() -> StorageSettings:
    return StorageSettings(
        endpoint_url="http://minio:9000",
        bucket="knowledge-test",
        access_key="key",
        secret_key="secret",
    )


@pytest.mark.asyncio
async def test_put_creates_bucket_and_round_trips(settings):
    backend = FakeS3Backend()
    store = S3ObjectStore(settings, session=backend)

    await store.put("kb/1/a.txt", b"hello", "text/plain")

    assert "knowledge-test" in backend.buckets
    assert backend.objects[("knowledge-test", "kb/1/a.txt")] == (b"hello", "text/plain")
    assert await store.get("kb/1/a.txt") == b"hello"
    assert backend.client_kwargs[0]["endpoint_url"] == "http://minio:9000"


@pytest.mark.asyncio
async def test_missing_object_is_a_permanent_error(settings):
    store = S3ObjectStore(settings, session=FakeS3Backend())

    with pytest.raises(StorageError) as exc_info:
        await store.get("kb/missing.pdf")

    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_write_failure_is_retryable(settings):
    backend = FakeS3Backend()
    backend.fail_writes = True
    store = S3ObjectStore(settings, session=backend)

    with pytest.raises(StorageError) as exc_info:
        await store.put("kb/a.txt", b"x", "text/plain")

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_delete_missing_object_succeeds(settings):
    backend = FakeS3Backend()
    store = S3ObjectStore(settings, session=backend)
    await store.put("kb/a.txt", b"x", "text/plain")

    await store.delete("kb/a.txt")
    await store.delete("kb/a.txt")

    assert backend.objects == {}
