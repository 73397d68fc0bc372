import logging
import time
from uuid import uuid4

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from filestore.core.config import get_settings

logger = logging.getLogger("filestore.access")

REQUEST_ID_HEADER = "X-Request-Id"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        header_request_id = request.headers.get(REQUEST_ID_HEADER)
        request_id = header_request_id.strip() if header_request_id else uuid4().hex
        request.state.request_id = request_id

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "request %s %s status=%s duration_ms=%s request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class UploadSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects uploads whose declared length already exceeds the limit.

    Runs before the multipart body is spooled to disk. Bodies without a
    ``Content-Length`` header are still checked once parsed.
    """

    # Allowance for multipart boundaries and part headers around the file.
    envelope_bytes = 16 * 1024

    def __init__(self, app, paths: tuple[str, ...]) -> None:
        super().__init__(app)
        self.paths = paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "POST" and request.url.path in self.paths:
            declared = request.headers.get("content-length")
            limit = get_settings().max_upload_bytes
            if declared and declared.isdigit() and int(declared) > limit + self.envelope_bytes:
                logger.info(
                    "Rejected upload of %s bytes to %s before reading the body",
                    declared,
                    request.url.path,
                )
                return JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    content={"detail": f"File exceeds the maximum upload size of {limit} bytes."},
                )
        return await call_next(request)
