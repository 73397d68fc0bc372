"""Upload, download and presigned listing over the storage capability."""

import logging
import os
from contextlib import aclosing
from typing import Final

from fastapi import UploadFile

from filestore.core.errors import FileStorageError, NotFoundError, PresignError, ValidationError
from filestore.models import ObjectReference, PresignedUrlRequest, UploadRequest
from filestore.schemas import FileDetails
from filestore.services.storage import ObjectStream, StorageService
from filestore.tasks.fanout import FanOut

logger = logging.getLogger(__name__)

PRESIGNED_URL_EXPIRY_SECONDS: Final[int] = 60 * 60
DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"


def _require(value: str | None, message: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(message)
    return value


def _payload_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    # The multipart parser spools parts to a seekable temporary file.
    stream = file.file
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def build_upload_request(
    bucket_name: str | None,
    file: UploadFile | None,
    max_upload_bytes: int,
) -> UploadRequest:
    """Validate an inbound upload without touching the backend."""
    if file is None or not file.filename:
        raise ValidationError("File not provided.")
    bucket = _require(bucket_name, "Bucket name is required.")

    size = _payload_size(file)
    if size == 0:
        raise ValidationError("File not provided.")
    if size > max_upload_bytes:
        raise ValidationError(f"File exceeds the maximum upload size of {max_upload_bytes} bytes.")

    return UploadRequest(
        reference=ObjectReference(bucket=bucket, key=file.filename),
        content_type=file.content_type or DEFAULT_CONTENT_TYPE,
        size_bytes=size,
        stream=file.file,
    )


async def upload_file(storage: StorageService, upload: UploadRequest) -> ObjectReference:
    ref = upload.reference
    await storage.put_object(upload)
    logger.info("Uploaded %s/%s (%d bytes)", ref.bucket, ref.key, upload.size_bytes)
    return ref


async def open_download(
    storage: StorageService,
    bucket_name: str | None,
    file_name: str | None,
) -> ObjectStream:
    ref = ObjectReference(
        bucket=_require(bucket_name, "Bucket name is required."),
        key=_require(file_name, "File name is required."),
    )
    try:
        return await storage.open_object(ref)
    except NotFoundError:
        raise NotFoundError(f"File '{ref.key}' not found in bucket '{ref.bucket}'.") from None


async def _presign(storage: StorageService, bucket: str, key: str) -> FileDetails:
    request = PresignedUrlRequest(
        reference=ObjectReference(bucket=bucket, key=key),
        expiry_seconds=PRESIGNED_URL_EXPIRY_SECONDS,
    )
    try:
        url = await storage.presign_get(request)
    except FileStorageError as exc:
        raise PresignError(key, detail=exc.detail or exc.message) from exc
    return FileDetails(file_name=key, presigned_url=url)


async def list_files_with_presigned_urls(
    storage: StorageService,
    bucket_name: str | None,
    prefix: str | None = None,
    *,
    concurrency: int = 16,
) -> list[FileDetails]:
    """List leaf objects under ``prefix`` with a presigned URL for each.

    Presigning overlaps with enumeration and is bounded by ``concurrency``.
    Results follow enumeration order. A single failure aborts the listing and
    stops enumeration at the next entry.
    """
    bucket = _require(bucket_name, "Bucket name is required.")
    if not await storage.bucket_exists(bucket):
        raise NotFoundError(f"Bucket '{bucket}' does not exist.")

    fanout: FanOut[FileDetails] = FanOut(concurrency)
    skipped = 0
    try:
        async with aclosing(storage.iter_objects(bucket, prefix or None)) as entries:
            async for entry in entries:
                fanout.raise_if_failed()
                if entry.is_dir:
                    skipped += 1
                    continue
                fanout.submit(lambda key=entry.key: _presign(storage, bucket, key))
    except BaseException:
        await fanout.cancel()
        raise

    details = await fanout.join()
    logger.debug(
        "Listed %d files in %s (prefix=%r, %d directory entries skipped)",
        len(details),
        bucket,
        prefix,
        skipped,
    )
    if not details:
        raise NotFoundError("No files found.")
    return details
