import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable, Final, TypeVar

import boto3
from botocore.client import BaseClient, Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from filestore.core.config import Settings, get_settings
from filestore.core.errors import (
    BackendOperationError,
    BackendUnavailable,
    FileStorageError,
    NotFoundError,
)
from filestore.models import ListingEntry, ObjectReference, PresignedUrlRequest, UploadRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOT_FOUND_CODES: Final[frozenset[str]] = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})
_UNAVAILABLE_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


def translate_backend_error(exc: Exception, action: str) -> FileStorageError:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        if code in _NOT_FOUND_CODES:
            return NotFoundError(f"{action}: not found.", detail=str(exc))
        return BackendOperationError(f"{action} failed.", detail=str(exc))
    if isinstance(exc, _UNAVAILABLE_ERRORS):
        return BackendUnavailable(f"{action}: storage backend unreachable.", detail=str(exc))
    return BackendOperationError(f"{action} failed.", detail=str(exc))


class ObjectStream:
    """An open object body, read forward only in fixed-size chunks."""

    def __init__(
        self,
        reference: ObjectReference,
        body: Any,
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> None:
        self.reference = reference
        self.body = body
        self.content_length = content_length
        self.content_type = content_type
        self._closed = False

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(self.body.read, chunk_size)
                except (BotoCoreError, OSError) as exc:
                    logger.error(
                        "Stream of %s/%s failed mid-transfer: %s",
                        self.reference.bucket,
                        self.reference.key,
                        exc,
                    )
                    raise translate_backend_error(exc, "Read object") from exc
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.body.close()


class StorageService:
    """S3-compatible object store capability.

    Every boto3 call is blocking, so each one runs in a worker thread and
    its exceptions are translated to the gateway's error taxonomy.
    """

    def __init__(self, settings: Settings | None = None, client: BaseClient | None = None) -> None:
        self.settings = settings or get_settings()
        self.client = client or self._create_client()

    def _create_client(self) -> BaseClient:
        session = boto3.session.Session()
        return session.client(
            "s3",
            endpoint_url=str(self.settings.s3_endpoint) if self.settings.s3_endpoint else None,
            aws_access_key_id=self.settings.s3_access_key,
            aws_secret_access_key=self.settings.s3_secret_key,
            region_name=self.settings.s3_region,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": self.settings.s3_addressing_style},
                connect_timeout=self.settings.s3_connect_timeout,
                read_timeout=self.settings.s3_read_timeout,
                retries={"total_max_attempts": self.settings.s3_max_attempts, "mode": "standard"},
                request_checksum_calculation="when_required",
                response_checksum_validation="when_required",
            ),
        )

    async def _call(self, action: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise translate_backend_error(exc, action) from exc

    async def bucket_exists(self, bucket: str) -> bool:
        try:
            await self._call("Check bucket", self.client.head_bucket, Bucket=bucket)
        except NotFoundError:
            return False
        return True

    async def list_buckets(self) -> list[str]:
        response = await self._call("List buckets", self.client.list_buckets)
        return [bucket["Name"] for bucket in response.get("Buckets", [])]

    async def put_object(self, upload: UploadRequest) -> None:
        ref = upload.reference
        await self._call(
            "Upload object",
            self.client.put_object,
            Bucket=ref.bucket,
            Key=ref.key,
            Body=upload.stream,
            ContentLength=upload.size_bytes,
            ContentType=upload.content_type,
        )

    async def open_object(self, ref: ObjectReference) -> ObjectStream:
        response = await self._call("Get object", self.client.get_object, Bucket=ref.bucket, Key=ref.key)
        return ObjectStream(
            ref,
            response["Body"],
            content_length=response.get("ContentLength"),
            content_type=response.get("ContentType"),
        )

    async def iter_objects(self, bucket: str, prefix: str | None = None) -> AsyncIterator[ListingEntry]:
        """Recursively list ``bucket`` under ``prefix``, one page per pull."""
        paginator = self.client.get_paginator("list_objects_v2")
        params: dict[str, Any] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        pages = iter(paginator.paginate(**params))

        while True:
            # StopIteration cannot cross a thread future, hence the sentinel.
            page = await self._call("List objects", next, pages, None)
            if page is None:
                return
            for item in page.get("Contents", []):
                key = item["Key"]
                yield ListingEntry(
                    bucket=bucket,
                    key=key,
                    size_bytes=item.get("Size", 0),
                    is_dir=key.endswith("/"),
                )
            for common_prefix in page.get("CommonPrefixes", []):
                yield ListingEntry(bucket=bucket, key=common_prefix["Prefix"], is_dir=True)

    async def presign_get(self, request: PresignedUrlRequest) -> str:
        ref = request.reference
        return await self._call(
            "Presign object",
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": ref.bucket, "Key": ref.key},
            ExpiresIn=request.expiry_seconds,
        )

    def close(self) -> None:
        self.client.close()
