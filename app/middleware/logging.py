"""
Request Logging Middleware
Logs every request with timing and tags the response with X-Request-ID
"""
import logging
import time
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Callback query strings carry authorization codes; never log them
UNLOGGED_QUERY_PATHS = ("/azure-oauth-callback", "/gmail-oauth-callback", "/nylas-callback")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware.
    Logs method, path, status code and duration for every request.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        start_time = time.time()

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        path = request.url.path
        if request.url.query and path not in UNLOGGED_QUERY_PATHS:
            path = f"{path}?{request.url.query}"

        logger.info(
            f"[{request_id}] {request.method} {path} - {response.status_code} ({duration_ms:.2f}ms)",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response
