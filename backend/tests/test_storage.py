import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.response import StreamingBody

from filestore.core.config import get_settings
from filestore.core.errors import BackendOperationError, BackendUnavailable, NotFoundError
from filestore.models import ObjectReference, PresignedUrlRequest, UploadRequest
from filestore.services.storage import ObjectStream, StorageService


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def service(s3_client):
    return StorageService(get_settings(), client=s3_client)


@pytest.mark.asyncio
async def test_put_object_forwards_stream_with_known_length(service, s3_client):
    stream = io.BytesIO(b"payload")
    upload = UploadRequest(
        reference=ObjectReference(bucket="docs", key="a.txt"),
        content_type="text/plain",
        size_bytes=7,
        stream=stream,
    )

    await service.put_object(upload)

    s3_client.put_object.assert_called_once_with(
        Bucket="docs",
        Key="a.txt",
        Body=stream,
        ContentLength=7,
        ContentType="text/plain",
    )


@pytest.mark.asyncio
async def test_bucket_exists_maps_404_to_false(service, s3_client):
    assert await service.bucket_exists("docs") is True

    s3_client.head_bucket.side_effect = _client_error("404", "HeadBucket")
    assert await service.bucket_exists("ghost") is False


@pytest.mark.asyncio
async def test_bucket_exists_propagates_access_errors(service, s3_client):
    s3_client.head_bucket.side_effect = _client_error("403", "HeadBucket")

    with pytest.raises(BackendOperationError):
        await service.bucket_exists("private")


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["NoSuchKey", "NoSuchBucket"])
async def test_missing_object_is_not_found(service, s3_client, code):
    s3_client.get_object.side_effect = _client_error(code)

    with pytest.raises(NotFoundError):
        await service.open_object(ObjectReference(bucket="docs", key="missing.txt"))


@pytest.mark.asyncio
async def test_unreachable_endpoint_is_backend_unavailable(service, s3_client):
    s3_client.list_buckets.side_effect = EndpointConnectionError(endpoint_url="http://minio.test:9000")

    with pytest.raises(BackendUnavailable) as excinfo:
        await service.list_buckets()
    assert "minio.test" in excinfo.value.detail


@pytest.mark.asyncio
async def test_other_client_errors_keep_underlying_message(service, s3_client):
    s3_client.put_object.side_effect = _client_error("AccessDenied", "PutObject")
    upload = UploadRequest(
        reference=ObjectReference(bucket="docs", key="a.txt"),
        content_type="text/plain",
        size_bytes=1,
        stream=io.BytesIO(b"a"),
    )

    with pytest.raises(BackendOperationError) as excinfo:
        await service.put_object(upload)
    assert "AccessDenied" in excinfo.value.detail


@pytest.mark.asyncio
async def test_open_object_streams_body_in_chunks(service, s3_client):
    data = b"0123456789" * 10
    s3_client.get_object.return_value = {
        "Body": StreamingBody(io.BytesIO(data), len(data)),
        "ContentLength": len(data),
        "ContentType": "text/plain",
    }

    stream = await service.open_object(ObjectReference(bucket="docs", key="a.txt"))
    chunks = [chunk async for chunk in stream.iter_chunks(32)]

    assert stream.content_length == len(data)
    assert [len(chunk) for chunk in chunks] == [32, 32, 32, 4]
    assert b"".join(chunks) == data


class _FailingBody:
    def __init__(self) -> None:
        self.reads = 0
        self.closed = False

    def read(self, size: int) -> bytes:
        self.reads += 1
        if self.reads == 1:
            return b"x" * size
        raise OSError("connection reset by peer")

    def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_mid_stream_failure_propagates_and_closes_body():
    body = _FailingBody()
    stream = ObjectStream(ObjectReference(bucket="docs", key="big.bin"), body)
    received = []

    with pytest.raises(BackendOperationError):
        async for chunk in stream.iter_chunks(8):
            received.append(chunk)

    assert received == [b"x" * 8]
    assert body.closed is True


@pytest.mark.asyncio
async def test_iter_objects_walks_pages_and_flags_directories(service, s3_client):
    paginator = s3_client.get_paginator.return_value
    paginator.paginate.return_value = iter(
        [
            {"Contents": [{"Key": "reports/", "Size": 0}, {"Key": "reports/a.pdf", "Size": 10}]},
            {"Contents": [{"Key": "reports/b.pdf", "Size": 20}], "CommonPrefixes": [{"Prefix": "reports/2024/"}]},
        ]
    )

    entries = [entry async for entry in service.iter_objects("docs", "reports")]

    s3_client.get_paginator.assert_called_once_with("list_objects_v2")
    paginator.paginate.assert_called_once_with(Bucket="docs", Prefix="reports")
    assert [(entry.key, entry.is_dir) for entry in entries] == [
        ("reports/", True),
        ("reports/a.pdf", False),
        ("reports/b.pdf", False),
        ("reports/2024/", True),
    ]
    assert entries[1].size_bytes == 10


@pytest.mark.asyncio
async def test_iter_objects_without_prefix_lists_whole_bucket(service, s3_client):
    paginator = s3_client.get_paginator.return_value
    paginator.paginate.return_value = iter([{}])

    entries = [entry async for entry in service.iter_objects("docs")]

    paginator.paginate.assert_called_once_with(Bucket="docs")
    assert entries == []


@pytest.mark.asyncio
async def test_listing_failure_is_translated(service, s3_client):
    def pages():
        raise _client_error("InternalError", "ListObjectsV2")
        yield  # pragma: no cover

    s3_client.get_paginator.return_value.paginate.return_value = pages()

    with pytest.raises(BackendOperationError):
        async for _ in service.iter_objects("docs"):
            pass


@pytest.mark.asyncio
async def test_presign_get_uses_requested_expiry(service, s3_client):
    s3_client.generate_presigned_url.return_value = "https://minio.test/docs/a.txt?sig"
    request = PresignedUrlRequest(reference=ObjectReference(bucket="docs", key="a.txt"), expiry_seconds=3600)

    url = await service.presign_get(request)

    assert url == "https://minio.test/docs/a.txt?sig"
    s3_client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "docs", "Key": "a.txt"},
        ExpiresIn=3600,
    )


def test_presign_request_rejects_non_positive_expiry():
    with pytest.raises(ValueError):
        PresignedUrlRequest(reference=ObjectReference(bucket="docs", key="a.txt"), expiry_seconds=0)


def test_real_client_is_built_from_settings():
    service = StorageService(get_settings())
    try:
        assert service.client.meta.endpoint_url.rstrip("/") == "http://minio.test:9000"
        assert service.client.meta.region_name == "us-east-1"
    finally:
        service.close()
