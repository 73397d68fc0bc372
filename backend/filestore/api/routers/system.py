from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, PlainTextResponse

from filestore.api.deps import get_app_settings, get_storage
from filestore.core.config import Settings
from filestore.schemas import HealthReport
from filestore.services.health import check_storage_health
from filestore.services.storage import StorageService

router = APIRouter(tags=["system"])


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def welcome(settings: Settings = Depends(get_app_settings)) -> str:
    return f"Welcome to {settings.app_name}!"


@router.get(
    "/health",
    response_model=HealthReport,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": HealthReport}},
)
async def health(
    storage: StorageService = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    report = await check_storage_health(storage, settings.health_check_timeout_seconds)
    status_code = status.HTTP_200_OK if report.healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=report.model_dump())
