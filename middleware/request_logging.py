"""
Request logging middleware: method, path, status, duration and a request id.
Headers, bodies and query strings are never logged (tokens, trade details).
"""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        path = request.scope.get("path", "")
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code
        level = logging.ERROR if status >= 500 else logging.WARNING if status >= 400 else logging.INFO
        logger.log(
            level,
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            request.method, path, status, duration_ms,
            extra={"request_id": request_id},
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
