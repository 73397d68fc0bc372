"""Render gateway errors as short JSON messages, never stack traces."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from filestore.core.config import get_settings
from filestore.core.errors import BackendOperationError, BackendUnavailable, FileStorageError

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred while processing the request."


def _public_message(exc: FileStorageError) -> str:
    if isinstance(exc, BackendUnavailable):
        return exc.public_message
    if isinstance(exc, BackendOperationError):
        if get_settings().expose_error_details:
            return f"An error occurred: {exc.message} {exc.detail or ''}".strip()
        return GENERIC_ERROR_MESSAGE
    return exc.message


async def file_storage_error_handler(request: Request, exc: FileStorageError) -> JSONResponse:
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "%s on %s %s: %s (%s)",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
            exc.detail,
        )
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": _public_message(exc)})


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error."},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FileStorageError, file_storage_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
