import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from filestore.api.exception_handlers import register_exception_handlers
from filestore.api.routers import files as files_router
from filestore.api.routers import system as system_router
from filestore.core.config import get_settings
from filestore.core.logging_config import configure_logging
from filestore.core.middleware import RequestLoggingMiddleware, UploadSizeLimitMiddleware
from filestore.core.security import TokenValidator
from filestore.services.storage import StorageService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    storage = StorageService(settings)
    app.state.storage = storage
    app.state.token_validator = TokenValidator(settings.token_validation)
    logger.info("Storage client ready (endpoint=%s)", settings.s3_endpoint or "aws default")

    try:
        yield
    finally:
        storage.close()
        logger.info("Storage client closed")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    docs_enabled = settings.env != "prod"
    app = FastAPI(
        debug=settings.debug,
        title=settings.app_name,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )

    app.add_middleware(UploadSizeLimitMiddleware, paths=(f"{files_router.router.prefix}/upload",))
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(system_router.router)
    app.include_router(files_router.router)

    return app


app = create_app()
