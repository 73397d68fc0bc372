from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from filestore.api.deps import get_app_settings, get_current_principal, get_storage
from filestore.core.config import Settings
from filestore.core.security import Principal
from filestore.schemas import FileDetails, UploadResult
from filestore.services import files as files_service
from filestore.services.storage import StorageService

router = APIRouter(prefix="/api/file", tags=["file"])


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@router.post("/upload", response_model=UploadResult)
async def upload_file(
    bucket_name: str | None = Query(default=None, alias="bucketName"),
    file: UploadFile | None = File(default=None),
    storage: StorageService = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    principal: Principal = Depends(get_current_principal),
) -> UploadResult:
    upload = files_service.build_upload_request(bucket_name, file, settings.max_upload_bytes)
    ref = await files_service.upload_file(storage, upload)
    return UploadResult(file_name=ref.key, bucket_name=ref.bucket)


@router.get("/download", response_class=StreamingResponse)
async def download_file(
    bucket_name: str | None = Query(default=None, alias="bucketName"),
    file_name: str | None = Query(default=None, alias="fileName"),
    storage: StorageService = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    principal: Principal = Depends(get_current_principal),
) -> StreamingResponse:
    stream = await files_service.open_download(storage, bucket_name, file_name)
    headers = {"Content-Disposition": _content_disposition(stream.reference.key)}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    return StreamingResponse(
        stream.iter_chunks(settings.download_chunk_size),
        media_type="application/octet-stream",
        headers=headers,
        background=BackgroundTask(stream.close),
    )


@router.get("/files", response_model=list[FileDetails])
async def list_files(
    bucket_name: str | None = Query(default=None, alias="bucketName"),
    file_name: str | None = Query(default=None, alias="fileName"),
    storage: StorageService = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    principal: Principal = Depends(get_current_principal),
) -> list[FileDetails]:
    return await files_service.list_files_with_presigned_urls(
        storage,
        bucket_name,
        file_name,
        concurrency=settings.presign_concurrency,
    )
