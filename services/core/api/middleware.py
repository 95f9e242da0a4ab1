"""
API Middleware Module
Request logging for the internal trust API
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import get_logger

logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging middleware"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time * 1000, 1)
        )

        response.headers["X-Process-Time"] = str(process_time)
        return response
